from bson import ObjectId

from policies import is_admin


def serialize(value):
    """Make a MongoDB document JSON friendly (ObjectIds become strings)"""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {key: serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(item) for item in value]
    return value


def public_user(user: dict, viewer: dict = None):
    """User document as seen by ``viewer``.

    The password hash never leaves the server. Email is shown to the user
    themself and to admins (and for deleted users it is already a placeholder);
    the redaction record is for admins only.
    """
    if user is None:
        return None
    admin = is_admin(viewer)
    is_self = bool(viewer) and viewer.get("_id") == user.get("_id")

    doc = {key: value for key, value in user.items() if key not in ("password", "avatarPublicId")}
    if not admin:
        doc.pop("deletedData", None)
    if not (admin or is_self or user.get("isDeleted")):
        doc.pop("email", None)
    return serialize(doc)
