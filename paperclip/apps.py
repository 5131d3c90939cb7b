from django.apps import AppConfig


class PaperclipConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'paperclip'
    verbose_name = 'Paperclip'
