import pytest

from dentlab import celery_app


@pytest.fixture(autouse=True)
def _test_settings(settings):
    # Prevent SecurityMiddleware from forcing https://testserver/...
    settings.SECURE_SSL_REDIRECT = False
    settings.SESSION_COOKIE_SECURE = False
    settings.CSRF_COOKIE_SECURE = False
    settings.SECURE_HSTS_SECONDS = 0

    # Mail stays in django.core.mail.outbox; notifications off unless a test enables them
    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
    settings.WORKFLOW_EMAIL_NOTIFICATIONS = False


@pytest.fixture(autouse=True, scope="session")
def _celery_eager():
    # Tasks queued from on_commit callbacks run inline, no broker needed
    celery_app.conf.CELERY_TASK_ALWAYS_EAGER = True
    celery_app.conf.CELERY_TASK_EAGER_PROPAGATES = True
    yield
