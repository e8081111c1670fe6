from __future__ import annotations
"""Operator commands, registered on the app's `flask` CLI.

    flask outbox-flush          record missed notifications, then push pending realtime messages
    flask auto-assign-sweep     assign every open unassigned ticket round-robin
"""
import click
from flask import Flask, current_app


def register_cli(app: Flask):
    @app.cli.command('outbox-flush')
    @click.option('--limit', default=None, type=int, help='Maximum messages to publish in this run.')
    def outbox_flush(limit):
        from fieldops.config.dispatch import OUTBOX_BATCH_SIZE
        from fieldops.services import notifications, realtime
        notified = notifications.dispatch_pending(limit=limit or OUTBOX_BATCH_SIZE)
        published = realtime.flush_outbox(limit=limit or OUTBOX_BATCH_SIZE)
        remaining = realtime.pending_count()
        current_app.logger.info('outbox-flush notified %s, published %s, %s still pending', notified, published, remaining)
        click.echo(f'published={published} pending={remaining} notified={notified}')

    @app.cli.command('auto-assign-sweep')
    def auto_assign_sweep():
        from fieldops.services import assignment, settings
        if not settings.auto_assign_enabled():
            click.echo('auto-assign is disabled; nothing to do')
            return
        assigned = assignment.auto_assign_sweep()
        click.echo(f'assigned={assigned}')
