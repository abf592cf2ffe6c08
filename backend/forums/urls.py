"""
Forums App URL Configuration
"""
from django.urls import path
from .views import (
    ForumListView,
    TopLevelForumListView,
    ForumDetailView,
    ForumChildrenView,
    ForumByNameView,
    ForumChildrenByNameView,
    ForumTopicListView,
    ForumTopicsByNameView,
    LatestTopicsView,
    TopicDetailView,
    TopicViewCountView,
    TopicCommentListView,
    CommentDetailView,
)

urlpatterns = [
    # Forums
    path('forums/', ForumListView.as_view(), name='forum-list'),
    path('forums/main/', TopLevelForumListView.as_view(), name='forum-main'),
    path('forums/<int:forum_id>/', ForumDetailView.as_view(), name='forum-detail'),
    path('forums/<int:forum_id>/children/', ForumChildrenView.as_view(), name='forum-children'),
    path('forums/<int:forum_id>/topics/', ForumTopicListView.as_view(), name='forum-topics'),

    # Forums by name
    path('forums/name/<str:name>/', ForumByNameView.as_view(), name='forum-by-name'),
    path('forums/name/<str:name>/children/', ForumChildrenByNameView.as_view(), name='forum-children-by-name'),
    path('forums/name/<str:name>/topics/', ForumTopicsByNameView.as_view(), name='forum-topics-by-name'),

    # Topics
    path('topics/latest/', LatestTopicsView.as_view(), name='topic-latest'),
    path('topics/<int:topic_id>/', TopicDetailView.as_view(), name='topic-detail'),
    path('topics/<int:topic_id>/views/', TopicViewCountView.as_view(), name='topic-views'),
    path('topics/<int:topic_id>/comments/', TopicCommentListView.as_view(), name='topic-comments'),

    # Comments
    path('comments/<int:comment_id>/', CommentDetailView.as_view(), name='comment-detail'),
]
