"""Management command that prints a fresh vault encryption key."""

from django.core.management.base import BaseCommand

from vault.crypto_utils import generate_encryption_key


class Command(BaseCommand):
    help = 'Generate a random 256-bit key for the ENCRYPTION_KEY environment variable.'

    def add_arguments(self, parser):
        parser.add_argument('--env', action='store_true', help='Print only the ENCRYPTION_KEY=... line')

    def handle(self, *args, **options):
        key = generate_encryption_key()

        if options['env']:
            self.stdout.write(f'ENCRYPTION_KEY={key}')
            return

        self.stdout.write(self.style.SUCCESS('\n=== SECURE ENCRYPTION KEY ==='))
        self.stdout.write(key)
        self.stdout.write('\nAdd this key to your environment as:')
        self.stdout.write(f'ENCRYPTION_KEY={key}')
        self.stdout.write(self.style.WARNING(
            '\nWARNING: Keep this key secure and never commit it to version control!'
        ))
        self.stdout.write('If this key is lost, all encrypted data will be unrecoverable.\n')
