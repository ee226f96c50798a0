from __future__ import annotations

from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand

from certificates.services.anchoring import AnchoringCoordinator


class Command(BaseCommand):
    help = "Marks certificates stuck in PROCESSING past the anchoring window as FAILED."

    def add_arguments(self, parser):
        parser.add_argument(
            "--older-than-minutes",
            type=int,
            default=None,
            help="Anchoring window in minutes (defaults to ANCHORING_STUCK_AFTER_MINUTES).",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Only list the stuck certificates.",
        )

    def handle(self, *args, **options):
        minutes = options["older_than_minutes"]
        if minutes is None:
            minutes = int(getattr(settings, "ANCHORING_STUCK_AFTER_MINUTES", 15))
        dry_run: bool = bool(options["dry_run"])

        ids = AnchoringCoordinator(gateway=None).sweep_stuck(older_than=timedelta(minutes=minutes), dry_run=dry_run)

        if not ids:
            self.stdout.write("No stuck certificates.")
            return
        verb = "Would mark" if dry_run else "Marked"
        self.stdout.write(self.style.SUCCESS(f"{verb} {len(ids)} certificate(s) as FAILED: {', '.join(map(str, ids))}"))
