"""
Django Admin Configuration for Forum Models

Counters are read-only here: they are maintained by forums.services and
repaired by `manage.py recount_forum_counters`.

Anything that would move a counter (adding topics, moving a topic or
comment to another parent, deleting topics or comments) is disabled.
Forum deletes are routed through the lifecycle so topics and comments
go with the forum.
"""
from django.contrib import admin
from .models import Forum, Topic, Comment
from .services import lifecycle


@admin.register(Forum)
class ForumAdmin(admin.ModelAdmin):
    list_display = ['name', 'title', 'parent', 'topics', 'replies']
    search_fields = ['name', 'title', 'description']
    readonly_fields = ['topics', 'replies']

    def delete_model(self, request, obj):
        lifecycle.delete_forum(obj.pk)

    def delete_queryset(self, request, queryset):
        for forum_id in list(queryset.values_list('pk', flat=True)):
            lifecycle.delete_forum(forum_id)


@admin.register(Topic)
class TopicAdmin(admin.ModelAdmin):
    list_display = ['title', 'forum', 'user', 'replies', 'views', 'created_date']
    list_filter = ['created_date']
    search_fields = ['title', 'text', 'user__username']
    readonly_fields = ['forum', 'replies', 'views', 'created_date', 'updated_date']

    def has_add_permission(self, request):
        # Topics are created through the API so forum.topics moves
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Comment)
class CommentAdmin(admin.ModelAdmin):
    list_display = ['id', 'topic', 'forum', 'user', 'created_date']
    list_filter = ['created_date']
    search_fields = ['text', 'user__username']
    readonly_fields = ['topic', 'forum', 'created_date', 'updated_date']

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
