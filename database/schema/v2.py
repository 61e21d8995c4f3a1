"""Schema v2 - Trade requests and private chat.

Adds the trade_requests table, links trades back to the request they were
opened from, and stores private chat messages. Chat rows are purged by the
API after the configured retention period.
"""
from .v1 import schema as v1_schema, TRADES, updated_at_trigger

TRADES_V2 = dict(TRADES, columns=TRADES['columns'] + [
    {'name': 'request_id', 'type': 'UUID'},
    {'name': 'requested_pokemon_tcg_id', 'type': 'TEXT'}
])

TRADE_REQUESTS = {
    'name': 'trade_requests',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'from_user_id', 'type': 'UUID', 'nullable': False},
        {'name': 'to_user_id', 'type': 'UUID', 'nullable': False},
        {'name': 'pokemon_tcg_id', 'type': 'TEXT'},
        {'name': 'card_name', 'type': 'TEXT'},
        {'name': 'card_image', 'type': 'TEXT'},
        {'name': 'note', 'type': 'TEXT', 'default': "''"},
        {'name': 'is_manual', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
        {'name': 'offered_pokemon_tcg_id', 'type': 'TEXT'},
        {'name': 'offered_card_name', 'type': 'TEXT'},
        {'name': 'offered_card_image', 'type': 'TEXT'},
        {'name': 'offered_price', 'type': 'DOUBLE PRECISION'},
        {'name': 'target_price', 'type': 'DOUBLE PRECISION'},
        {'name': 'offered_user_card_id', 'type': 'UUID'},
        {'name': 'target_user_card_id', 'type': 'UUID'},
        {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'",
         'check': "status IN ('pending', 'accepted', 'rejected', 'completed', 'cancelled')"},
        {'name': 'trade_id', 'type': 'UUID'},
        {'name': 'finished_at', 'type': 'TIMESTAMPTZ'},
        {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
        {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
    ],
    'indexes': [
        {'name': 'idx_trade_requests_to', 'columns': ['to_user_id', 'created_at']},
        {'name': 'idx_trade_requests_from', 'columns': ['from_user_id', 'created_at']}
    ]
}

CHAT_MESSAGES = {
    'name': 'chat_messages',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'from_user_id', 'type': 'UUID', 'nullable': False},
        {'name': 'to_user_id', 'type': 'UUID', 'nullable': False},
        {'name': 'text', 'type': 'TEXT', 'nullable': False, 'check': "length(btrim(text)) > 0"},
        {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
    ],
    'indexes': [
        {'name': 'idx_chat_messages_pair', 'columns': ['from_user_id', 'to_user_id', 'created_at']},
        {'name': 'idx_chat_messages_created', 'columns': ['created_at']}
    ]
}

schema = {
    'version': 2,
    'tables': [
        TRADES_V2 if table['name'] == 'trades' else table
        for table in v1_schema['tables']
    ] + [TRADE_REQUESTS, CHAT_MESSAGES],
    'triggers': v1_schema['triggers'] + [updated_at_trigger('trade_requests')],
    'migrations': [
        '''
        ALTER TABLE trades
        ADD COLUMN IF NOT EXISTS request_id UUID,
        ADD COLUMN IF NOT EXISTS requested_pokemon_tcg_id TEXT;
        ''',
        '''
        CREATE TABLE IF NOT EXISTS trade_requests (
            id UUID DEFAULT gen_random_uuid(),
            from_user_id UUID NOT NULL,
            to_user_id UUID NOT NULL,
            pokemon_tcg_id TEXT,
            card_name TEXT,
            card_image TEXT,
            note TEXT DEFAULT '',
            is_manual BOOLEAN NOT NULL DEFAULT false,
            offered_pokemon_tcg_id TEXT,
            offered_card_name TEXT,
            offered_card_image TEXT,
            offered_price DOUBLE PRECISION,
            target_price DOUBLE PRECISION,
            offered_user_card_id UUID,
            target_user_card_id UUID,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'accepted', 'rejected', 'completed', 'cancelled')),
            trade_id UUID,
            finished_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (id)
        );
        ''',
        'CREATE INDEX IF NOT EXISTS idx_trade_requests_to ON trade_requests(to_user_id, created_at);',
        'CREATE INDEX IF NOT EXISTS idx_trade_requests_from ON trade_requests(from_user_id, created_at);',
        '''
        CREATE TRIGGER trg_trade_requests_updated_at
        BEFORE UPDATE ON trade_requests
        FOR EACH ROW
        EXECUTE FUNCTION set_updated_at();
        ''',
        '''
        CREATE TABLE IF NOT EXISTS chat_messages (
            id UUID DEFAULT gen_random_uuid(),
            from_user_id UUID NOT NULL,
            to_user_id UUID NOT NULL,
            text TEXT NOT NULL CHECK (length(btrim(text)) > 0),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (id)
        );
        ''',
        'CREATE INDEX IF NOT EXISTS idx_chat_messages_pair ON chat_messages(from_user_id, to_user_id, created_at);',
        'CREATE INDEX IF NOT EXISTS idx_chat_messages_created ON chat_messages(created_at);'
    ]
}
