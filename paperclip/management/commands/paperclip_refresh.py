"""
Management command to re-render attachment variants from stored originals.
"""

from django.apps import apps
from django.core.management.base import BaseCommand, CommandError

from paperclip.exceptions import PaperclipError
from paperclip.fields import attached_files_for


class Command(BaseCommand):
    help = 'Re-render the variants of an attachment from its stored original files'

    def add_arguments(self, parser):
        parser.add_argument('model', help='Model label, e.g. gallery.Profile')
        parser.add_argument('attachment', help='Attachment name, e.g. avatar')
        parser.add_argument(
            '--variants',
            default='',
            help='Comma separated variant names to render (default: all declared variants)',
        )
        parser.add_argument(
            '--ids',
            nargs='+',
            default=None,
            help='Only refresh instances with these primary keys',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be refreshed without rendering anything',
        )

    def handle(self, *args, **options):
        try:
            model = apps.get_model(options['model'])
        except (LookupError, ValueError) as e:
            raise CommandError(f"Unknown model '{options['model']}': {e}")

        name = options['attachment']
        variants = [v.strip() for v in options['variants'].split(',') if v.strip()] or None
        dry_run = options['dry_run']

        queryset = model._default_manager.order_by('pk')
        if options['ids']:
            queryset = queryset.filter(pk__in=options['ids'])

        total_count = queryset.count()
        if total_count == 0:
            self.stdout.write(self.style.SUCCESS('No instances to refresh.'))
            return

        self.stdout.write(f'Found {total_count} instances to process...')

        refreshed_count = 0
        skipped_count = 0
        failed_count = 0
        for instance in queryset:
            attachment_set = attached_files_for(instance)
            if attachment_set is None:
                raise CommandError(f"{model.__name__} has no attachments")

            try:
                attachment = attachment_set.get_attachment(name)
            except PaperclipError as e:
                raise CommandError(str(e))

            if not attachment.exists:
                skipped_count += 1
                continue

            if dry_run:
                self.stdout.write(
                    f'  Would refresh {model.__name__} {instance.pk} ({attachment.original_filename})'
                )
                continue

            try:
                rendered = attachment.reprocess(instance, variants)
            except PaperclipError as e:
                failed_count += 1
                self.stderr.write(f'  Failed to refresh {model.__name__} {instance.pk}: {e}')
                continue

            refreshed_count += 1
            self.stdout.write(f"  Refreshed {model.__name__} {instance.pk}: {', '.join(rendered) or 'no variants'}")

        if dry_run:
            self.stdout.write(self.style.WARNING(
                f'DRY RUN: Would have refreshed {total_count - skipped_count} instances. '
                f'Run without --dry-run to apply changes.'
            ))
        else:
            self.stdout.write(self.style.SUCCESS(
                f'Refreshed {refreshed_count} instances ({skipped_count} without files, {failed_count} failed).'
            ))
