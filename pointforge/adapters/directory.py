"""Model-backed UserDirectory adapter."""

from django.utils.module_loading import import_string

from pointforge.protocols.directory import UserDirectory, UserInfo


class ModelUserDirectory:
    """
    Adapter that implements UserDirectory by querying pointforge.User.

    Default when POINTFORGE["USER_DIRECTORY"] is empty.
    """

    def __init__(self, using: str = "default"):
        self.using = using

    def get_user(self, utorid: str) -> UserInfo | None:
        """Return user info for utorid, or None."""
        from pointforge.models import User

        if not utorid:
            return None

        user = User.objects.using(self.using).filter(utorid=utorid).first()
        if user is None:
            return None

        return UserInfo(
            id=user.pk,
            utorid=user.utorid,
            role=user.role,
            verified=user.verified,
            suspicious=user.suspicious,
            activated=user.activated,
        )


def get_user_directory(using: str = "default") -> UserDirectory:
    """Instantiate the configured directory (model-backed when unset)."""
    from pointforge.conf import pointforge_settings

    backend_path = pointforge_settings.USER_DIRECTORY
    if not backend_path:
        return ModelUserDirectory(using=using)

    backend_class = import_string(backend_path)
    return backend_class()
