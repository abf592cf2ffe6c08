"""
Forumboard URL Configuration
"""
from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def api_root(request):
    """Root endpoint with API information."""
    return JsonResponse({
        'message': 'Forumboard API Server',
        'version': '1.0',
        'endpoints': {
            'forums': '/api/forums/',
            'top_level_forums': '/api/forums/main/',
            'forum': '/api/forums/<id>/',
            'forum_topics': '/api/forums/<id>/topics/',
            'latest_topics': '/api/topics/latest/',
            'topic': '/api/topics/<id>/',
            'topic_comments': '/api/topics/<id>/comments/',
            'comment': '/api/comments/<id>/',
        },
        'admin': '/admin/',
    })


urlpatterns = [
    path('', api_root, name='api-root'),
    path('admin/', admin.site.urls),
    path('api/', include('forums.urls')),
]
