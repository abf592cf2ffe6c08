"""
DRF Serializers
===============

Serializers handle:
1. Validation of incoming data
2. Transformation of model instances to JSON

DESIGN DECISIONS:
-----------------
1. Separate read and write serializers
   - Write serializers only validate; the view hands validated_data to
     forums.services, which does the actual writes and counter updates
2. Counters (topics, replies, views) are read-only everywhere
3. forum/topic references and the author come from the URL and
   request.user, never from the body
"""

from rest_framework import serializers
from django.contrib.auth.models import User

from .models import Forum, Topic, Comment


class UserSerializer(serializers.ModelSerializer):
    """Minimal user representation for embedding in other objects."""

    class Meta:
        model = User
        fields = ['id', 'username', 'email']
        read_only_fields = fields


class ForumSerializer(serializers.ModelSerializer):
    """
    Forum representation and create/update validation.

    No unique validator on name: a duplicate name is reported by the
    store as a Conflict (409), not as a 400.
    """

    class Meta:
        model = Forum
        fields = [
            'id',
            'name',
            'title',
            'description',
            'icon',
            'parent',
            'options',
            'topics',
            'replies',
        ]
        read_only_fields = ['topics', 'replies']
        extra_kwargs = {
            'name': {'validators': []},
        }

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Forum name cannot be empty.")
        return value.strip()

    def validate_options(self, value):
        if not isinstance(value, dict):
            raise serializers.ValidationError("Options must be an object.")
        return value


class TopicSerializer(serializers.ModelSerializer):
    """Topic as returned by the API."""
    user = UserSerializer(read_only=True)

    class Meta:
        model = Topic
        fields = [
            'id',
            'forum',
            'user',
            'title',
            'text',
            'created_date',
            'updated_date',
            'options',
            'rating',
            'replies',
            'views',
        ]
        read_only_fields = fields


class LatestTopicSerializer(TopicSerializer):
    """Latest topics embed the whole forum instead of its id."""
    forum = ForumSerializer(read_only=True)


class TopicWriteSerializer(serializers.ModelSerializer):
    """
    Validation for creating and updating topics.

    The forum comes from the URL and the author from request.user.
    """

    class Meta:
        model = Topic
        fields = ['title', 'text', 'options', 'rating']

    def validate_title(self, value):
        if not value.strip():
            raise serializers.ValidationError("Title cannot be empty.")
        return value.strip()

    def validate_text(self, value):
        if not value.strip():
            raise serializers.ValidationError("Topic text cannot be empty.")
        return value


class CommentSerializer(serializers.ModelSerializer):
    """Comment as returned by the API."""
    user = UserSerializer(read_only=True)

    class Meta:
        model = Comment
        fields = [
            'id',
            'topic',
            'forum',
            'user',
            'text',
            'rating',
            'created_date',
            'updated_date',
        ]
        read_only_fields = fields


class CommentWriteSerializer(serializers.ModelSerializer):
    """Validation for creating and updating comments."""

    class Meta:
        model = Comment
        fields = ['text', 'rating']

    def validate_text(self, value):
        if not value.strip():
            raise serializers.ValidationError("Comment cannot be empty.")
        return value


class TopicDeleteSerializer(serializers.Serializer):
    """Optional ?replies=R on topic deletion."""
    replies = serializers.IntegerField(min_value=0, required=False)


class CascadeResultSerializer(serializers.Serializer):
    forums = serializers.IntegerField()
    topics = serializers.IntegerField()
    comments = serializers.IntegerField()
