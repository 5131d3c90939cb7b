"""
Tests for the attachment registry
"""

from django.test import TestCase

from paperclip.config import AttachmentOptions, Variant
from paperclip.exceptions import (
    ConfigurationError,
    DuplicateAttachmentError,
    InvalidStepConfigError,
    UnknownAttachmentError,
)
from paperclip.registry import AttachmentDescriptor, AttachmentRegistry


class AttachmentRegistryTestCase(TestCase):
    """Test AttachmentRegistry registration and lookup."""

    def setUp(self):
        self.registry = AttachmentRegistry()

    def test_register_and_get(self):
        """Test that a registered descriptor can be looked up by name."""
        descriptor = AttachmentDescriptor(name='avatar', options=AttachmentOptions())
        self.registry.register('avatar', descriptor)

        self.assertIs(self.registry.get('avatar'), descriptor)
        self.assertIn('avatar', self.registry)
        self.assertEqual(len(self.registry), 1)

    def test_register_duplicate_fails(self):
        """Test that registering the same name twice raises."""
        self.registry.register_attachment('avatar')

        with self.assertRaises(DuplicateAttachmentError):
            self.registry.register_attachment('avatar')

    def test_duplicate_is_configuration_error(self):
        """Test that duplicates are reported as configuration errors."""
        self.registry.register_attachment('avatar')

        with self.assertRaises(ConfigurationError):
            self.registry.register_attachment('avatar')

    def test_get_unknown_fails(self):
        """Test that looking up an unknown name raises."""
        with self.assertRaises(UnknownAttachmentError):
            self.registry.get('missing')

    def test_find_unknown_returns_none(self):
        self.assertIsNone(self.registry.find('missing'))

    def test_descriptor_name_must_match(self):
        """Test that the descriptor name must match the registration name."""
        descriptor = AttachmentDescriptor(name='logo', options=AttachmentOptions())

        with self.assertRaises(ConfigurationError):
            self.registry.register('avatar', descriptor)

    def test_register_after_freeze_fails(self):
        """Test that the registry rejects registrations once frozen."""
        self.registry.register_attachment('avatar')
        self.registry.freeze()

        self.assertTrue(self.registry.is_frozen)
        with self.assertRaises(ConfigurationError):
            self.registry.register_attachment('logo')

    def test_declaration_order(self):
        """Test that names and iteration keep declaration order."""
        for name in ('banner', 'avatar', 'logo'):
            self.registry.register_attachment(name)

        self.assertEqual(self.registry.names(), ['banner', 'avatar', 'logo'])
        self.assertEqual([d.name for d in self.registry], ['banner', 'avatar', 'logo'])

    def test_default_column_name(self):
        descriptor = self.registry.register_attachment('avatar')
        self.assertEqual(descriptor.column, 'avatar_file')

    def test_custom_column_name(self):
        descriptor = self.registry.register_attachment('avatar', column='avatar_meta')
        self.assertEqual(descriptor.column, 'avatar_meta')


class RegisterAttachmentOptionsTestCase(TestCase):
    """Test the options accepted by register_attachment()."""

    def setUp(self):
        self.registry = AttachmentRegistry()

    def test_options_from_dict(self):
        """Test the disk/variants/default configuration keys."""
        descriptor = self.registry.register_attachment('avatar', {
            'disk': 'media',
            'variants': {'thumb': '100x100#', 'small': '50x'},
            'default': 'thumb',
        })

        options = descriptor.options
        self.assertEqual(options.storage_disk, 'media')
        self.assertEqual(options.default, 'thumb')
        self.assertEqual(options.variant_names, ('original', 'thumb', 'small'))
        self.assertTrue(options.variant('thumb').steps[0].parameters['crop'])

    def test_options_from_keywords(self):
        descriptor = self.registry.register_attachment(
            'avatar',
            variants=[Variant.make('thumb').resize('100x100')],
        )
        self.assertEqual(descriptor.options.variant_names, ('original', 'thumb'))

    def test_options_instance_is_used_as_is(self):
        options = AttachmentOptions(disk='media')
        descriptor = self.registry.register_attachment('avatar', options)
        self.assertIs(descriptor.options, options)

    def test_unknown_option_fails(self):
        """Test that unknown option keys are rejected."""
        with self.assertRaises(ConfigurationError):
            self.registry.register_attachment('avatar', {'styles': {'thumb': '100x100'}})

    def test_unknown_default_variant_fails(self):
        with self.assertRaises(ConfigurationError):
            self.registry.register_attachment('avatar', variants={'thumb': '100x100'}, default='large')

    def test_invalid_step_fails_at_registration(self):
        """Test that invalid variant steps surface while declaring."""
        with self.assertRaises(InvalidStepConfigError):
            self.registry.register_attachment('avatar', variants={'thumb': 'big'})

        self.assertNotIn('avatar', self.registry)
