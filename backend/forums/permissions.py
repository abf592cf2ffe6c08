"""
Role checks for the forum routes.

Forum privileges map onto Django's built-in model permissions:

    forums_view / forums_create / forums_update / forums_delete
        -> forums.view_forum / add_forum / change_forum / delete_forum
    forum_topics_*   -> forums.*_topic
    forum_comments_* -> forums.*_comment

Grant them through a Group (see `manage.py seed_forums`).
"""
from rest_framework.permissions import DjangoModelPermissions

VIEW_PERM = '%(app_label)s.view_%(model_name)s'


class ForumRolePermission(DjangoModelPermissions):
    """
    DjangoModelPermissions, but reads also need the view permission.

    The model is taken from the view's `queryset`.
    """
    perms_map = {
        'GET': [VIEW_PERM],
        'OPTIONS': [],
        'HEAD': [VIEW_PERM],
        'POST': ['%(app_label)s.add_%(model_name)s'],
        'PUT': ['%(app_label)s.change_%(model_name)s'],
        'PATCH': ['%(app_label)s.change_%(model_name)s'],
        'DELETE': ['%(app_label)s.delete_%(model_name)s'],
    }


class ViewerPermission(ForumRolePermission):
    """Every method only needs view access (used for the view counter)."""
    perms_map = {
        method: [VIEW_PERM] if perms else []
        for method, perms in ForumRolePermission.perms_map.items()
    }
