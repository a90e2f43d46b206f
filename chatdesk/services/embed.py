from __future__ import annotations

from html import escape

from chatdesk.core.config import get_settings
from chatdesk.domain.models import Tenant


def embed_snippet(tenant: Tenant) -> str:
    # The tenant id is public by construction; origin checks, not secrecy, protect the widget.
    script_url = escape(get_settings().widget_script_url, quote=True)
    client_id = escape(tenant.id, quote=True)
    return f'<script src="{script_url}" data-client-id="{client_id}" async></script>'
