"""
Tests for Attachment state handling and metadata lookups
"""

import copy
import pickle
from io import BytesIO
from unittest.mock import Mock, patch

from django.core.files.storage import default_storage
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase, override_settings
from PIL import Image

from gallery.models import Document, Profile
from paperclip.attachment import AttachmentState
from paperclip.exceptions import (
    ConfigurationError,
    InvalidUploadError,
    ProcessingError,
    UnknownAttachmentError,
    UnknownVariantError,
)
from paperclip.files import StorableFile
from paperclip.storage import StorageAdapter


def make_png(size=(500, 500), color='green'):
    buffer = BytesIO()
    Image.new('RGB', size, color).save(buffer, format='PNG')
    return buffer.getvalue()


class AttachmentStateTestCase(TestCase):
    """Test pending actions on an unsaved instance."""

    def setUp(self):
        self.profile = Profile(name='Ada')
        self.avatar = self.profile.attachments.get_attachment('avatar')
        self.file = StorableFile('avatar.png', make_png(), 'image/png')

    def test_initial_state(self):
        self.assertEqual(self.avatar.state, AttachmentState.CLEAN)
        self.assertIsNone(self.avatar.pending_file)
        self.assertFalse(self.avatar.exists)
        self.assertFalse(self.profile.attachments.needs_processing)

    def test_set_uploaded_file(self):
        """Test that an upload is recorded and marks the instance dirty."""
        self.avatar.set_uploaded_file(self.file)

        self.assertEqual(self.avatar.state, AttachmentState.PENDING_UPLOAD)
        self.assertIs(self.avatar.pending_file, self.file)
        self.assertTrue(self.profile.attachments.needs_processing)

    def test_deletion_clears_pending_upload(self):
        """Test that at most one pending action exists."""
        self.avatar.set_uploaded_file(self.file)
        self.avatar.set_to_be_deleted()

        self.assertEqual(self.avatar.state, AttachmentState.PENDING_DELETION)
        self.assertIsNone(self.avatar.pending_file)

    def test_upload_clears_pending_deletion(self):
        self.avatar.set_to_be_deleted()
        self.avatar.set_uploaded_file(self.file)

        self.assertEqual(self.avatar.state, AttachmentState.PENDING_UPLOAD)
        self.assertFalse(self.avatar.is_pending_deletion)

    def test_after_save_requires_primary_key(self):
        """Test that files are only stored once the instance has an id."""
        self.avatar.set_uploaded_file(self.file)

        with self.assertRaises(ProcessingError):
            self.avatar.after_save(self.profile)


class AttachmentLookupTestCase(TestCase):
    """Test variant names, paths and URLs."""

    def setUp(self):
        self.profile = Profile(name='Ada')
        self.avatar = self.profile.attachments.get_attachment('avatar')

    def test_variants_declaration_order(self):
        self.assertEqual(list(self.avatar.variants()), ['original', 'thumb', 'medium'])

    def test_variants_is_restartable(self):
        """Test that the variant sequence can be iterated more than once."""
        names = self.avatar.variants()
        self.assertEqual(list(names), list(names))

    def test_only_existing_variants(self):
        self.assertEqual(list(self.avatar.variants(only_existing=True)), [])

        self.profile.avatar_file = {'variants': {'original': {'path': 'a.png'}, 'medium': {'path': 'm.jpg'}}}

        self.assertEqual(list(self.avatar.variants(only_existing=True)), ['original', 'medium'])

    def test_variant_path_uses_default_variant(self):
        self.profile.avatar_file = {'variants': {'thumb': {'path': 'thumb.png'}}}

        self.assertEqual(self.avatar.variant_path(), 'thumb.png')
        self.assertIsNone(self.avatar.variant_path('original'))

    def test_url_falls_back_to_default_url(self):
        """Test the default URL template for missing files."""
        self.assertEqual(self.avatar.url('medium'), '/static/gallery/missing-medium.png')
        self.assertEqual(self.avatar.url(), '/static/gallery/missing-thumb.png')

    def test_url_of_stored_variant(self):
        self.profile.avatar_file = {'variants': {'thumb': {'path': 'gallery/thumb.png'}}}
        self.assertEqual(self.avatar.url('thumb'), '/media/gallery/thumb.png')

    @override_settings(PAPERCLIP={'DEFAULT_URL': '/missing/:class_name/:id/:attachment-:variant.png'})
    def test_default_url_is_interpolated(self):
        """Test that the default URL template accepts the path placeholders."""
        document = Document(pk=7, title='Report')

        self.assertEqual(document.attachments['doc'].url(), '/missing/document/7/doc-original.png')

    @override_settings(PAPERCLIP={'DEFAULT_URL': '/missing/:hash.png'})
    def test_default_url_with_unknown_placeholder(self):
        document = Document(pk=7, title='Report')

        with self.assertRaises(ConfigurationError):
            document.attachments['doc'].url()

    def test_url_without_default(self):
        document = Document(title='Report')
        self.assertIsNone(document.attachments.get_attachment('doc').url())

    def test_unknown_variant(self):
        """Test that unknown variant names raise."""
        with self.assertRaises(UnknownVariantError):
            self.avatar.variant_path('huge')

        with self.assertRaises(UnknownVariantError):
            self.avatar.url('huge')

    def test_metadata_properties(self):
        self.profile.avatar_file = {
            'file_name': 'me.png',
            'file_size': 123,
            'content_type': 'image/png',
            'updated_at': '2026-10-19T12:00:00+00:00',
            'variants': {},
        }

        self.assertEqual(self.avatar.original_filename, 'me.png')
        self.assertEqual(self.avatar.size, 123)
        self.assertEqual(self.avatar.content_type, 'image/png')
        self.assertEqual(self.avatar.updated_at.year, 2026)


class AttachmentSetTestCase(TestCase):
    """Test the per-instance attachment accessors."""

    def setUp(self):
        self.profile = Profile(name='Ada')

    def test_get_unknown_attachment(self):
        with self.assertRaises(UnknownAttachmentError):
            self.profile.attachments.get_attachment('banner')

    def test_set_unknown_attachment(self):
        with self.assertRaises(UnknownAttachmentError):
            self.profile.attachments.set_attachment('banner', make_png())

    def test_instances_have_separate_sets(self):
        other = Profile(name='Grace')
        self.assertIsNot(self.profile.attachments, other.attachments)
        self.assertIs(self.profile.attachments, self.profile.attachments)

    def test_attachment_set_cannot_be_replaced(self):
        with self.assertRaises(AttributeError):
            self.profile.attachments = None

    def test_instance_with_attachments_can_be_pickled(self):
        """Test that the cached attachments survive pickling and deepcopy."""
        self.profile.attachments['avatar']

        restored = pickle.loads(pickle.dumps(self.profile))
        copied = copy.deepcopy(self.profile)

        self.assertEqual(restored.attachments.names(), ['avatar'])
        self.assertEqual(list(copied.attachments['avatar'].variants()), ['original', 'thumb', 'medium'])
        self.assertIs(copied.attachments.instance, copied)

    def test_invalid_upload_leaves_state_unchanged(self):
        """Test that a rejected value does not change the attachment."""
        with self.assertRaises(InvalidUploadError):
            self.profile.attachments.set_attachment('avatar', 12345)

        avatar = self.profile.attachments.get_attachment('avatar')
        self.assertEqual(avatar.state, AttachmentState.CLEAN)
        self.assertFalse(self.profile.attachments.needs_processing)

    def test_falsy_value_is_ignored(self):
        self.profile.attachments.set_attachment('avatar', None)

        self.assertEqual(self.profile.attachments['avatar'].state, AttachmentState.CLEAN)
        self.assertFalse(self.profile.attachments.needs_processing)

    def test_null_marker_marks_deletion(self):
        self.profile.attachments.set_attachment('avatar', '__paperclip_null__')

        self.assertTrue(self.profile.attachments['avatar'].is_pending_deletion)
        self.assertTrue(self.profile.attachments.needs_processing)


class AttachmentProcessingTestCase(TestCase):
    """Test after_save processing against storage."""

    def setUp(self):
        self.profile = Profile.objects.create(name='Ada')
        self.upload = SimpleUploadedFile('avatar.png', make_png(), content_type='image/png')

    def test_metadata_is_recorded(self):
        """Test the persisted metadata layout."""
        self.profile.attachments.set_attachment('avatar', self.upload)
        self.profile.save()

        self.profile.refresh_from_db()
        metadata = self.profile.avatar_file

        self.assertEqual(metadata['file_name'], 'avatar.png')
        self.assertEqual(metadata['content_type'], 'image/png')
        self.assertEqual(set(metadata['variants']), {'original', 'thumb', 'medium'})
        self.assertTrue(metadata['variants']['medium']['path'].endswith('/medium/avatar.jpg'))
        self.assertEqual(metadata['variants']['medium']['content_type'], 'image/jpeg')
        self.assertIn('updated_at', metadata)

    def test_failed_write_records_nothing(self):
        """Test that a failing variant write aborts the metadata commit."""
        adapter = Mock(spec=StorageAdapter)
        adapter.write.side_effect = [
            'gallery/profile/original/avatar.png',
            OSError('disk full'),
        ]

        self.profile.attachments.set_attachment('avatar', self.upload)
        with patch('paperclip.attachment.get_adapter', return_value=adapter):
            with self.assertRaises(ProcessingError):
                self.profile.save()

        self.profile.refresh_from_db()
        self.assertEqual(self.profile.avatar_file, {})
        self.assertEqual(self.profile.attachments['avatar'].state, AttachmentState.PENDING_UPLOAD)
        self.assertTrue(self.profile.attachments.needs_processing)
        adapter.delete.assert_not_called()

    def test_failed_processing_is_retried_on_next_save(self):
        adapter = Mock(spec=StorageAdapter)
        adapter.write.side_effect = OSError('disk full')

        self.profile.attachments.set_attachment('avatar', self.upload)
        with patch('paperclip.attachment.get_adapter', return_value=adapter):
            with self.assertRaises(ProcessingError):
                self.profile.save()

        self.profile.save()

        self.assertTrue(self.profile.attachments['avatar'].exists)
        self.assertEqual(self.profile.attachments['avatar'].state, AttachmentState.CLEAN)

    @override_settings(PAPERCLIP={'PATH': ':class_name/:id/:filename'})
    def test_variants_sharing_a_path_are_rejected(self):
        """Test that a thumbnail never overwrites the original it was rendered from."""
        upload = SimpleUploadedFile('a.png', make_png((50, 50)), content_type='image/png')
        self.profile.attachments.set_attachment('avatar', upload)

        with self.assertRaises(ProcessingError) as ctx:
            self.profile.save()

        self.assertIn(':variant', str(ctx.exception))
        self.assertFalse(default_storage.exists(f'profile/{self.profile.pk}/a.png'))
        self.profile.refresh_from_db()
        self.assertEqual(self.profile.avatar_file, {})

    def test_reprocess_renders_from_original(self):
        """Test re-rendering a variant from the stored original."""
        self.profile.attachments.set_attachment('avatar', self.upload)
        self.profile.save()
        avatar = self.profile.attachments['avatar']
        thumb_path = avatar.variant_path('thumb')
        default_storage.delete(thumb_path)

        rendered = avatar.reprocess(self.profile, ['thumb'])

        self.assertEqual(rendered, ['thumb'])
        self.assertTrue(default_storage.exists(thumb_path))
        with default_storage.open(thumb_path, 'rb') as fh:
            self.assertEqual(Image.open(fh).size, (100, 100))

    def test_reprocess_without_original(self):
        with self.assertRaises(ProcessingError):
            self.profile.attachments['avatar'].reprocess(self.profile)
