"""Schema v3 - Friend trade room invitations.

A user invites one of their friends to a private trade room. Accepting the
invitation opens a private trade and records its room code on the invite.
"""
from .v2 import schema as v2_schema
from .v1 import updated_at_trigger

FRIEND_TRADE_INVITES = {
    'name': 'friend_trade_invites',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'from_user_id', 'type': 'UUID', 'nullable': False},
        {'name': 'to_user_id', 'type': 'UUID', 'nullable': False},
        {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'",
         'check': "status IN ('pending', 'accepted', 'rejected', 'cancelled', 'completed')"},
        {'name': 'private_room_code', 'type': 'TEXT'},
        {'name': 'trade_id', 'type': 'UUID'},
        {'name': 'completed_at', 'type': 'TIMESTAMPTZ'},
        {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
        {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
    ],
    'indexes': [
        {'name': 'idx_friend_trade_invites_to', 'columns': ['to_user_id', 'created_at']},
        {'name': 'idx_friend_trade_invites_from', 'columns': ['from_user_id', 'created_at']}
    ]
}

schema = {
    'version': 3,
    'tables': v2_schema['tables'] + [FRIEND_TRADE_INVITES],
    'triggers': v2_schema['triggers'] + [updated_at_trigger('friend_trade_invites')],
    'migrations': [
        '''
        CREATE TABLE IF NOT EXISTS friend_trade_invites (
            id UUID DEFAULT gen_random_uuid(),
            from_user_id UUID NOT NULL,
            to_user_id UUID NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'accepted', 'rejected', 'cancelled', 'completed')),
            private_room_code TEXT,
            trade_id UUID,
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (id)
        );
        ''',
        'CREATE INDEX IF NOT EXISTS idx_friend_trade_invites_to ON friend_trade_invites(to_user_id, created_at);',
        'CREATE INDEX IF NOT EXISTS idx_friend_trade_invites_from ON friend_trade_invites(from_user_id, created_at);',
        '''
        CREATE TRIGGER trg_friend_trade_invites_updated_at
        BEFORE UPDATE ON friend_trade_invites
        FOR EACH ROW
        EXECUTE FUNCTION set_updated_at();
        '''
    ]
}
