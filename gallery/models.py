from pathlib import Path

from django.conf import settings
from django.db import models

from paperclip.config import Variant
from paperclip.fields import AttachedFiles, AttachmentField
from paperclip.registry import AttachmentRegistry


WATERMARK_PATH = getattr(
    settings,
    'GALLERY_WATERMARK_PATH',
    Path(__file__).resolve().parent / 'static' / 'gallery' / 'watermark.png',
)


profile_attachments = AttachmentRegistry()
profile_attachments.register_attachment(
    'avatar',
    variants=[
        Variant.make('thumb').auto_orient().resize('100x100'),
        Variant.make('medium').resize('300x300').watermark(WATERMARK_PATH, opacity=0.5).extension('jpg'),
    ],
    default='thumb',
    url='/static/gallery/missing-:variant.png',
)

document_attachments = AttachmentRegistry()
document_attachments.register_attachment('doc', keep_old_files=False)


class Profile(models.Model):
    name = models.CharField(max_length=200)
    avatar_file = AttachmentField()
    created_at = models.DateTimeField(auto_now_add=True)

    attachments = AttachedFiles(profile_attachments)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class Document(models.Model):
    title = models.CharField(max_length=500)
    doc_file = AttachmentField()
    created_at = models.DateTimeField(auto_now_add=True)

    attachments = AttachedFiles(document_attachments)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return self.title
