"""
DRF Views
=========

API endpoints for forums, topics and comments.

Views are thin:
1. Check the role (ForumRolePermission, from the view's queryset model)
2. Validate input with a write serializer
3. Call the lifecycle coordinator (forums.services) or a read query
   (forums.queries)
4. Serialize the result

Domain errors (NotFound, Conflict, InvalidState) are not caught here;
forums.exceptions.custom_exception_handler turns them into 404/409/400.
"""

from django.conf import settings
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.pagination import CursorPagination

from .models import Forum, Topic, Comment
from .permissions import ForumRolePermission, ViewerPermission
from .serializers import (
    ForumSerializer,
    TopicSerializer,
    LatestTopicSerializer,
    TopicWriteSerializer,
    TopicDeleteSerializer,
    CommentSerializer,
    CommentWriteSerializer,
    CascadeResultSerializer,
)
from . import queries
from .services import lifecycle


class TopicPagination(CursorPagination):
    """
    Cursor pagination for topic listings.

    WHY CURSOR PAGINATION:
    - Offset pagination scans and discards every skipped row
    - Cursor pagination seeks on (forum, -created_date) index
    """
    ordering = '-created_date'
    cursor_query_param = 'cursor'

    def get_page_size(self, request):
        return getattr(settings, 'FORUMS', {}).get('TOPICS_PAGE_SIZE', 20)


class ForumRoleView(APIView):
    permission_classes = [ForumRolePermission]


# ============================================================================
# FORUMS
# ============================================================================

class ForumListView(ForumRoleView):
    """
    GET  /api/forums/   all forums, by name
    POST /api/forums/   create a forum (counters start at 0)
    """
    queryset = Forum.objects.all()

    def get(self, request):
        forums = queries.list_forums()
        return Response(ForumSerializer(forums, many=True).data)

    def post(self, request):
        serializer = ForumSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        forum = lifecycle.create_forum(**serializer.validated_data)
        return Response(ForumSerializer(forum).data, status=status.HTTP_201_CREATED)


class TopLevelForumListView(ForumRoleView):
    """GET /api/forums/main/   forums without a parent"""
    queryset = Forum.objects.all()

    def get(self, request):
        forums = queries.list_top_level_forums()
        return Response(ForumSerializer(forums, many=True).data)


class ForumDetailView(ForumRoleView):
    """
    GET    /api/forums/<id>/
    PUT    /api/forums/<id>/   full update
    PATCH  /api/forums/<id>/   partial update
    DELETE /api/forums/<id>/   forum + its topics + their comments
    """
    queryset = Forum.objects.all()

    def get(self, request, forum_id):
        return Response(ForumSerializer(queries.get_forum(forum_id)).data)

    def put(self, request, forum_id):
        return self._update(request, forum_id, partial=False)

    def patch(self, request, forum_id):
        return self._update(request, forum_id, partial=True)

    def _update(self, request, forum_id, partial):
        serializer = ForumSerializer(data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        forum = lifecycle.update_forum(forum_id, serializer.validated_data)
        return Response(ForumSerializer(forum).data)

    def delete(self, request, forum_id):
        result = lifecycle.delete_forum(forum_id)
        return Response({
            'deleted': CascadeResultSerializer(result).data
        })


class ForumChildrenView(ForumRoleView):
    """GET /api/forums/<id>/children/"""
    queryset = Forum.objects.all()

    def get(self, request, forum_id):
        forums = queries.list_child_forums(forum_id)
        return Response(ForumSerializer(forums, many=True).data)


class ForumByNameView(ForumRoleView):
    """GET /api/forums/name/<name>/"""
    queryset = Forum.objects.all()

    def get(self, request, name):
        return Response(ForumSerializer(queries.get_forum_by_name(name)).data)


class ForumChildrenByNameView(ForumRoleView):
    """GET /api/forums/name/<name>/children/"""
    queryset = Forum.objects.all()

    def get(self, request, name):
        forums = queries.list_child_forums_by_name(name)
        return Response(ForumSerializer(forums, many=True).data)


# ============================================================================
# TOPICS
# ============================================================================

class ForumTopicListView(ForumRoleView):
    """
    GET  /api/forums/<id>/topics/   topics of a forum, newest first
    POST /api/forums/<id>/topics/   create a topic (forum.topics += 1)

    Body:
    {
        "title": "...",
        "text": "...",
        "options": {},
        "rating": {}
    }
    """
    queryset = Topic.objects.all()
    pagination_class = TopicPagination

    def get(self, request, forum_id):
        queries.get_forum(forum_id)
        return self._paginated(request, queries.topics_for_forum(forum_id))

    def post(self, request, forum_id):
        serializer = TopicWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        topic = lifecycle.create_topic(
            forum_id,
            user=request.user,
            **serializer.validated_data
        )
        return Response(TopicSerializer(topic).data, status=status.HTTP_201_CREATED)

    def _paginated(self, request, queryset):
        paginator = self.pagination_class()
        page = paginator.paginate_queryset(queryset, request, view=self)
        return paginator.get_paginated_response(
            TopicSerializer(page, many=True).data
        )


class ForumTopicsByNameView(ForumTopicListView):
    """GET /api/forums/name/<name>/topics/"""
    http_method_names = ['get', 'head', 'options']

    def get(self, request, name):
        return self._paginated(request, queries.topics_for_forum_name(name))


class LatestTopicsView(ForumRoleView):
    """GET /api/topics/latest/   newest topics across all forums"""
    queryset = Topic.objects.all()

    def get(self, request):
        topics = queries.get_latest_topics()
        return Response(LatestTopicSerializer(topics, many=True).data)


class TopicDetailView(ForumRoleView):
    """
    GET    /api/topics/<id>/
    PUT    /api/topics/<id>/
    PATCH  /api/topics/<id>/
    DELETE /api/topics/<id>/?replies=R

    DELETE removes the topic and its comments, then takes 1 off
    forum.topics and R off forum.replies. Without ?replies, R is the
    number of comments actually removed.
    """
    queryset = Topic.objects.all()

    def get(self, request, topic_id):
        topic = queries.get_topic_with_author(topic_id)
        return Response(TopicSerializer(topic).data)

    def put(self, request, topic_id):
        return self._update(request, topic_id, partial=False)

    def patch(self, request, topic_id):
        return self._update(request, topic_id, partial=True)

    def _update(self, request, topic_id, partial):
        serializer = TopicWriteSerializer(data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        topic = lifecycle.update_topic(topic_id, serializer.validated_data)
        return Response(TopicSerializer(topic).data)

    def delete(self, request, topic_id):
        params = TopicDeleteSerializer(data=request.query_params)
        params.is_valid(raise_exception=True)
        result = lifecycle.delete_topic(
            topic_id,
            replies=params.validated_data.get('replies')
        )
        return Response({
            'deleted': CascadeResultSerializer(result).data
        })


class TopicViewCountView(APIView):
    """
    POST /api/topics/<id>/views/

    Records one view. Only needs the view permission on topics.
    """
    permission_classes = [ViewerPermission]
    queryset = Topic.objects.all()

    def post(self, request, topic_id):
        topic = lifecycle.view_topic(topic_id)
        return Response({'id': topic.pk, 'views': topic.views})


# ============================================================================
# COMMENTS
# ============================================================================

class TopicCommentListView(ForumRoleView):
    """
    GET  /api/topics/<id>/comments/   oldest first
    POST /api/topics/<id>/comments/   topic.replies += 1, forum.replies += 1

    Body:
    {
        "text": "Comment text",
        "rating": {}
    }
    """
    queryset = Comment.objects.all()

    def get(self, request, topic_id):
        queries.get_topic_with_author(topic_id)
        comments = queries.comments_for_topic(topic_id)
        return Response(CommentSerializer(comments, many=True).data)

    def post(self, request, topic_id):
        serializer = CommentWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        comment = lifecycle.create_comment(
            topic_id,
            user=request.user,
            **serializer.validated_data
        )
        return Response(CommentSerializer(comment).data, status=status.HTTP_201_CREATED)


class CommentDetailView(ForumRoleView):
    """
    GET    /api/comments/<id>/
    PUT    /api/comments/<id>/
    PATCH  /api/comments/<id>/
    DELETE /api/comments/<id>/   topic.replies -= 1, forum.replies -= 1
    """
    queryset = Comment.objects.all()

    def get(self, request, comment_id):
        return Response(CommentSerializer(queries.get_comment(comment_id)).data)

    def put(self, request, comment_id):
        return self._update(request, comment_id, partial=False)

    def patch(self, request, comment_id):
        return self._update(request, comment_id, partial=True)

    def _update(self, request, comment_id, partial):
        serializer = CommentWriteSerializer(data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        comment = lifecycle.update_comment(comment_id, serializer.validated_data)
        return Response(CommentSerializer(comment).data)

    def delete(self, request, comment_id):
        lifecycle.delete_comment(comment_id)
        return Response(status=status.HTTP_204_NO_CONTENT)
