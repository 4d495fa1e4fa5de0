# core/middleware.py
"""
Request middleware: current user tracking for audit logging, language
detection and cache headers for authenticated responses.
"""

import threading

from django.conf import settings
from django.utils import translation
from django.utils.cache import add_never_cache_headers

from .i18n import DEFAULT_LANGUAGE, normalize_language

# Thread-local storage for the current user and request
_thread_locals = threading.local()


def get_current_user():
    """Get the current user from thread-local storage"""
    return getattr(_thread_locals, 'user', None)


def set_current_user(user):
    """Set the current user in thread-local storage"""
    _thread_locals.user = user


def get_current_request():
    return getattr(_thread_locals, 'request', None)


def set_current_request(request):
    _thread_locals.request = request


class AuditMiddleware:
    """
    Track the current user for audit logging.
    Stores user and request in thread-local storage so signals can access them.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        user = getattr(request, 'user', None)
        if user and user.is_authenticated:
            set_current_user(user)
        else:
            set_current_user(None)
        set_current_request(request)

        try:
            response = self.get_response(request)
        finally:
            # Clean up after request
            set_current_user(None)
            set_current_request(None)

        return response


def detect_language(request):
    """
    Resolve the request language.

    Order: ?lang= query string, lang cookie, Accept-Language header, default.
    Returns (language, source).
    """
    lang = normalize_language(request.GET.get('lang'))
    if lang:
        return lang, 'querystring'

    lang = normalize_language(request.COOKIES.get(settings.LANGUAGE_COOKIE_NAME))
    if lang:
        return lang, 'cookie'

    header = request.META.get('HTTP_ACCEPT_LANGUAGE', '')
    for part in header.split(','):
        lang = normalize_language(part.split(';')[0])
        if lang:
            return lang, 'header'

    return DEFAULT_LANGUAGE, 'default'


class LanguageMiddleware:
    """
    Sets request.LANGUAGE and activates Django's
    translation so built-in validation messages follow the same language.
    A language picked through the query string is remembered in a cookie.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        language, source = detect_language(request)
        request.LANGUAGE = language
        translation.activate(language)

        response = self.get_response(request)

        if source == 'querystring':
            response.set_cookie(
                settings.LANGUAGE_COOKIE_NAME,
                language,
                max_age=365 * 24 * 60 * 60,
                samesite='Lax',
            )
        response.setdefault('Content-Language', language)
        translation.deactivate()
        return response


class NoCacheMiddleware:
    """
    Prevent browser caching of authenticated responses.
    Patient data must not survive in the browser cache after logout.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        response = self.get_response(request)

        if hasattr(request, 'user') and request.user.is_authenticated:
            add_never_cache_headers(response)
            response['Pragma'] = 'no-cache'
            response['Expires'] = '0'

        return response
