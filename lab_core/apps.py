# lab_core/apps.py

from django.apps import AppConfig
import logging

logger = logging.getLogger(__name__)


class LabCoreConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "lab_core"
    verbose_name = "Dental laboratory"

    def ready(self):
        from . import signals  # noqa

        logger.debug("lab_core signals registered")
