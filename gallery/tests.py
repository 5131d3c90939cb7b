from io import BytesIO
from unittest.mock import Mock, patch

from django.core.files.storage import default_storage
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase
from PIL import Image

from paperclip.attachment import AttachmentState
from paperclip.exceptions import InvalidUploadError
from paperclip.files import StorableFile
from paperclip.storage import StorageAdapter

from .models import Document, Profile


def make_upload(name='avatar.png', size=(500, 500), color='teal'):
    buffer = BytesIO()
    Image.new('RGB', size, color).save(buffer, format='PNG')
    return SimpleUploadedFile(name, buffer.getvalue(), content_type='image/png')


def open_stored(path):
    with default_storage.open(path, 'rb') as fh:
        image = Image.open(fh)
        image.load()
    return image


class ProfileAvatarTestCase(TestCase):
    """End-to-end tests for profile avatars."""

    def setUp(self):
        self.profile = Profile.objects.create(name='Ada')

    def test_upload_generates_variants(self):
        """Test that saving a 500x500 avatar stores the original and every variant."""
        self.profile.attachments.set_attachment('avatar', make_upload())
        self.profile.save()

        avatar = self.profile.attachments.get_attachment('avatar')
        self.assertEqual(list(avatar.variants(only_existing=True)), ['original', 'thumb', 'medium'])
        self.assertEqual(open_stored(avatar.variant_path('original')).size, (500, 500))
        self.assertEqual(open_stored(avatar.variant_path('thumb')).size, (100, 100))

        medium = open_stored(avatar.variant_path('medium'))
        self.assertEqual(medium.size, (300, 300))
        self.assertEqual(medium.format, 'JPEG')

    def test_metadata_survives_reload(self):
        self.profile.attachments.set_attachment('avatar', make_upload())
        self.profile.save()

        reloaded = Profile.objects.get(pk=self.profile.pk)
        avatar = reloaded.attachments['avatar']

        self.assertTrue(avatar.exists)
        self.assertEqual(avatar.original_filename, 'avatar.png')
        self.assertEqual(list(avatar.variants(only_existing=True)), ['original', 'thumb', 'medium'])
        self.assertEqual(avatar.url(), '/media/' + avatar.variant_path('thumb'))

    def test_urls_for(self):
        self.profile.attachments.set_attachment('avatar', make_upload())
        self.profile.save()

        urls = self.profile.attachments.urls_for('avatar')

        self.assertEqual(list(urls), ['original', 'thumb', 'medium'])
        self.assertTrue(urls['medium'].endswith('/avatar/medium/avatar.jpg'))

    def test_missing_avatar_uses_default_url(self):
        self.assertEqual(self.profile.attachments['avatar'].url(), '/static/gallery/missing-thumb.png')

    def test_replacing_upload_removes_old_files(self):
        """Test that old variant files are deleted once the new ones are recorded."""
        self.profile.attachments.set_attachment('avatar', make_upload('first.png'))
        self.profile.save()
        old_paths = list(self.profile.attachments.paths_for('avatar').values())

        self.profile.attachments.set_attachment('avatar', make_upload('second.png', color='navy'))
        self.profile.save()
        new_paths = list(self.profile.attachments.paths_for('avatar').values())

        for path in old_paths:
            self.assertFalse(default_storage.exists(path))
        for path in new_paths:
            self.assertTrue(default_storage.exists(path))
        self.assertEqual(self.profile.attachments['avatar'].original_filename, 'second.png')

    def test_null_marker_clears_attachment(self):
        """Test that assigning the null marker removes the stored files and metadata."""
        self.profile.attachments.set_attachment('avatar', make_upload())
        self.profile.save()
        paths = list(self.profile.attachments.paths_for('avatar').values())

        self.profile.attachments.set_attachment('avatar', '__paperclip_null__')
        self.profile.save()

        avatar = self.profile.attachments['avatar']
        self.assertEqual(avatar.state, AttachmentState.DELETED)
        self.assertEqual(list(avatar.variants(only_existing=True)), [])
        for path in paths:
            self.assertFalse(default_storage.exists(path))

        self.profile.refresh_from_db()
        self.assertEqual(self.profile.avatar_file, {})

    def test_upload_after_clear(self):
        self.profile.attachments.set_attachment('avatar', '__paperclip_null__')
        self.profile.save()

        self.profile.attachments.set_attachment('avatar', make_upload())
        self.profile.save()

        self.assertTrue(self.profile.attachments['avatar'].exists)
        self.assertEqual(self.profile.attachments['avatar'].state, AttachmentState.CLEAN)

    def test_deletion_before_save_discards_upload(self):
        """Test that a deletion requested before save wins over the pending upload."""
        adapter = Mock(spec=StorageAdapter)

        avatar = self.profile.attachments['avatar']
        avatar.set_uploaded_file(StorableFile('avatar.png', make_upload().read(), 'image/png'))
        avatar.set_to_be_deleted()

        with patch('paperclip.attachment.get_adapter', return_value=adapter):
            self.profile.save()

        self.assertEqual(avatar.state, AttachmentState.DELETED)
        adapter.write.assert_not_called()
        adapter.delete.assert_not_called()
        self.assertEqual(list(avatar.variants(only_existing=True)), [])

    def test_invalid_upload_is_rejected(self):
        """Test that an unreadable value leaves the attachment untouched."""
        self.profile.attachments.set_attachment('avatar', make_upload())
        self.profile.save()
        paths = self.profile.attachments.paths_for('avatar')

        with self.assertRaises(InvalidUploadError):
            self.profile.attachments.set_attachment('avatar', SimpleUploadedFile('empty.png', b''))

        self.assertEqual(self.profile.attachments['avatar'].state, AttachmentState.CLEAN)
        self.assertEqual(self.profile.attachments.paths_for('avatar'), paths)

    def test_direct_assignment_is_rejected(self):
        with self.assertRaises(AttributeError):
            self.profile.attachments = make_upload()


class DocumentTestCase(TestCase):
    """End-to-end tests for documents without variants."""

    def setUp(self):
        self.document = Document.objects.create(title='Quarterly report')

    def test_document_has_only_original(self):
        self.document.attachments.set_attachment(
            'doc', SimpleUploadedFile('report.pdf', b'%PDF-1.4 report', content_type='application/pdf')
        )
        self.document.save()

        doc = self.document.attachments['doc']
        self.assertEqual(list(doc.variants(only_existing=True)), ['original'])
        self.assertEqual(doc.content_type, 'application/pdf')
        self.assertEqual(doc.size, len(b'%PDF-1.4 report'))

    def test_delete_removes_original_once(self):
        """Test that deleting a document deletes its stored original exactly once."""
        adapter = Mock(spec=StorageAdapter)
        adapter.write.side_effect = lambda path, data: path
        adapter.delete.return_value = True

        with patch('paperclip.attachment.get_adapter', return_value=adapter):
            self.document.attachments.set_attachment('doc', make_upload('scan.png'))
            self.document.save()
            original = self.document.attachments['doc'].variant_path('original')

            self.document.delete()

        adapter.delete.assert_called_once_with(original)
        self.assertEqual(self.document.attachments['doc'].delete_errors, [])
