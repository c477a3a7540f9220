"""Identifier settings for ticket and purchase codes.

Values come from the Flask config (populated from the environment in create_app);
the module-level defaults apply when a key is missing.
"""
DEFAULT_COMPANY_CODE = 'RPR'
DEFAULT_BRANCH_CODE = 'MAIN'
DEFAULT_PURCHASE_BRANCH_CODE = 'CMP'
DEFAULT_SEQUENCE_LENGTH = 4
DEFAULT_MAX_ATTEMPTS = 50

CONFIG_KEYS = {
    'TICKET_COMPANY_CODE': DEFAULT_COMPANY_CODE,
    'TICKET_BRANCH_CODE': DEFAULT_BRANCH_CODE,
    'PURCHASE_BRANCH_CODE': DEFAULT_PURCHASE_BRANCH_CODE,
    'TICKET_SEQUENCE_LENGTH': DEFAULT_SEQUENCE_LENGTH,
    'TICKET_SEQUENCE_MAX_ATTEMPTS': DEFAULT_MAX_ATTEMPTS,
}

INT_KEYS = ('TICKET_SEQUENCE_LENGTH', 'TICKET_SEQUENCE_MAX_ATTEMPTS')


def load_ticketing_config(getter):
    """Build the identifier settings dict from a ``getter(key) -> str | None`` (os.getenv, config.get)."""
    out = {}
    for key, default in CONFIG_KEYS.items():
        raw = getter(key)
        if raw is None or raw == '':
            out[key] = default
            continue
        if key in INT_KEYS:
            try:
                value = int(raw)
            except ValueError:
                raise ValueError(f'{key} must be int')
            if value < 1:
                raise ValueError(f'{key} must be >= 1')
            out[key] = value
        else:
            out[key] = str(raw).strip().upper()
    return out
