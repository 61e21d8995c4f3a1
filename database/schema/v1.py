"""Schema v1 - Initial card trading schema.

Users with their settings, the card catalog, per-user card ownership,
trades with their offered cards and messages, and notifications.

user_cards, trades and notifications intentionally carry no foreign key to
users: deleting a user leaves those rows in place.
"""

TIMESTAMPS = [
    {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
    {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
]

UPDATED_AT_FUNCTION = '''
BEGIN
    NEW.updated_at = now();
    RETURN NEW;
END;
'''

def updated_at_trigger(table: str) -> dict:
    return {
        'name': f'trg_{table}_updated_at',
        'table': table,
        'timing': 'BEFORE',
        'event': 'UPDATE',
        'function_name': 'set_updated_at',
        'function_body': UPDATED_AT_FUNCTION
    }

USERS = {
    'name': 'users',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'username', 'type': 'TEXT', 'nullable': False, 'unique': True},
        {'name': 'email', 'type': 'TEXT', 'nullable': False, 'unique': True},
        {'name': 'password_hash', 'type': 'TEXT', 'nullable': False},
        {'name': 'profile_image', 'type': 'TEXT', 'default': "''"},
        {'name': 'language', 'type': 'TEXT', 'nullable': False, 'default': "'es'",
         'check': "language IN ('es', 'en')"},
        {'name': 'dark_mode', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
        {'name': 'notify_trades', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
        {'name': 'notify_messages', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
        {'name': 'notify_friend_requests', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
        {'name': 'show_collection', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
        {'name': 'show_wishlist', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
    ] + TIMESTAMPS
}

USER_FRIENDS = {
    'name': 'user_friends',
    'columns': [
        {'name': 'user_id', 'type': 'UUID', 'nullable': False},
        {'name': 'friend_id', 'type': 'UUID', 'nullable': False},
        {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
    ],
    'primary_key': ['user_id', 'friend_id'],
    'foreign_keys': [
        {'columns': ['user_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'},
        {'columns': ['friend_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'}
    ]
}

USER_BLOCKED = {
    'name': 'user_blocked',
    'columns': [
        {'name': 'user_id', 'type': 'UUID', 'nullable': False},
        {'name': 'blocked_id', 'type': 'UUID', 'nullable': False},
        {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
    ],
    'primary_key': ['user_id', 'blocked_id'],
    'foreign_keys': [
        {'columns': ['user_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'},
        {'columns': ['blocked_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'}
    ]
}

CARDS = {
    'name': 'cards',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'pokemon_tcg_id', 'type': 'TEXT', 'nullable': False, 'unique': True},
        {'name': 'name', 'type': 'TEXT', 'nullable': False},
        {'name': 'category', 'type': 'TEXT', 'nullable': False, 'default': "'unknown'",
         'check': "category IN ('pokemon', 'trainer', 'energy', 'unknown')"},
        {'name': 'supertype', 'type': 'TEXT'},
        {'name': 'subtype', 'type': 'TEXT'},
        {'name': 'series', 'type': 'TEXT'},
        {'name': 'set_name', 'type': 'TEXT'},
        {'name': 'rarity', 'type': 'TEXT'},
        {'name': 'image_small', 'type': 'TEXT'},
        {'name': 'image_large', 'type': 'TEXT'},
        {'name': 'illustrator', 'type': 'TEXT'},
        {'name': 'card_number', 'type': 'TEXT'},
        {'name': 'price_cardmarket_avg', 'type': 'DOUBLE PRECISION'},
        {'name': 'price_tcgplayer_market', 'type': 'DOUBLE PRECISION'},
        {'name': 'price_avg', 'type': 'DOUBLE PRECISION'},
        {'name': 'last_price_update', 'type': 'TIMESTAMPTZ'},
        {'name': 'details', 'type': 'JSONB', 'nullable': False, 'default': "'{}'::jsonb"},
    ] + TIMESTAMPS,
    'indexes': [
        {'name': 'idx_cards_name', 'columns': ['lower(name)']},
        {'name': 'idx_cards_rarity', 'columns': ['rarity']},
        {'name': 'idx_cards_set', 'columns': ['set_name']},
        {'name': 'idx_cards_category', 'columns': ['category']}
    ]
}

USER_CARDS = {
    'name': 'user_cards',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'user_id', 'type': 'UUID', 'nullable': False},
        {'name': 'card_id', 'type': 'UUID', 'nullable': False},
        {'name': 'pokemon_tcg_id', 'type': 'TEXT'},
        {'name': 'condition', 'type': 'TEXT', 'nullable': False, 'default': "'Near Mint'",
         'check': "condition IN ('Mint', 'Near Mint', 'Excellent', 'Good', 'Poor')"},
        {'name': 'is_public', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
        {'name': 'is_favorite', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
        {'name': 'acquisition_date', 'type': 'TIMESTAMPTZ', 'default': 'now()'},
        {'name': 'notes', 'type': 'TEXT'},
        {'name': 'quantity', 'type': 'INT4', 'nullable': False, 'default': '1',
         'check': 'quantity >= 1'},
        {'name': 'estimated_value', 'type': 'DOUBLE PRECISION'},
        {'name': 'for_trade', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
        {'name': 'collection_type', 'type': 'TEXT', 'nullable': False, 'default': "'collection'",
         'check': "collection_type IN ('collection', 'wishlist')"},
    ] + TIMESTAMPS,
    'foreign_keys': [
        {'columns': ['card_id'], 'references': 'cards(id)'}
    ],
    'indexes': [
        {'name': 'idx_user_cards_user_type', 'columns': ['user_id', 'collection_type']},
        {'name': 'idx_user_cards_card', 'columns': ['card_id']},
        {'name': 'idx_user_cards_tcg_id', 'columns': ['pokemon_tcg_id']}
    ]
}

TRADES = {
    'name': 'trades',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'initiator_user_id', 'type': 'UUID', 'nullable': False},
        {'name': 'receiver_user_id', 'type': 'UUID', 'nullable': False},
        {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'",
         'check': "status IN ('pending', 'accepted', 'rejected', 'completed', 'cancelled')"},
        {'name': 'trade_type', 'type': 'TEXT', 'nullable': False, 'default': "'private'",
         'check': "trade_type IN ('public', 'private')"},
        {'name': 'private_room_code', 'type': 'TEXT'},
        {'name': 'initiator_accepted', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
        {'name': 'receiver_accepted', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
        {'name': 'initiator_total_value', 'type': 'DOUBLE PRECISION'},
        {'name': 'receiver_total_value', 'type': 'DOUBLE PRECISION'},
        {'name': 'value_difference_percentage', 'type': 'DOUBLE PRECISION'},
        {'name': 'completed_at', 'type': 'TIMESTAMPTZ'},
    ] + TIMESTAMPS,
    'indexes': [
        {'name': 'idx_trades_room_code', 'columns': ['private_room_code'], 'unique': True,
         'where': 'private_room_code IS NOT NULL'},
        {'name': 'idx_trades_status', 'columns': ['status']},
        {'name': 'idx_trades_initiator', 'columns': ['initiator_user_id']},
        {'name': 'idx_trades_receiver', 'columns': ['receiver_user_id']}
    ]
}

TRADE_CARDS = {
    'name': 'trade_cards',
    'columns': [
        {'name': 'trade_id', 'type': 'UUID', 'nullable': False},
        {'name': 'side', 'type': 'TEXT', 'nullable': False,
         'check': "side IN ('initiator', 'receiver')"},
        {'name': 'position', 'type': 'INT4', 'nullable': False},
        {'name': 'user_card_id', 'type': 'UUID', 'nullable': False},
        {'name': 'card_id', 'type': 'UUID'},
        {'name': 'estimated_value', 'type': 'DOUBLE PRECISION'}
    ],
    'primary_key': ['trade_id', 'side', 'position'],
    'foreign_keys': [
        {'columns': ['trade_id'], 'references': 'trades(id)', 'on_delete': 'CASCADE'}
    ]
}

TRADE_MESSAGES = {
    'name': 'trade_messages',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'trade_id', 'type': 'UUID', 'nullable': False},
        {'name': 'sender_user_id', 'type': 'UUID', 'nullable': False},
        {'name': 'message', 'type': 'TEXT', 'nullable': False},
        {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
    ],
    'foreign_keys': [
        {'columns': ['trade_id'], 'references': 'trades(id)', 'on_delete': 'CASCADE'}
    ],
    'indexes': [
        {'name': 'idx_trade_messages_trade', 'columns': ['trade_id', 'created_at']}
    ]
}

NOTIFICATIONS = {
    'name': 'notifications',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'user_id', 'type': 'UUID', 'nullable': False},
        {'name': 'type', 'type': 'TEXT', 'nullable': False, 'default': "'system'",
         'check': "type IN ('trade', 'message', 'friendRequest', 'system')"},
        {'name': 'title', 'type': 'TEXT', 'nullable': False},
        {'name': 'message', 'type': 'TEXT', 'nullable': False},
        {'name': 'is_read', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
        {'name': 'related_id', 'type': 'TEXT'},
        {'name': 'data', 'type': 'JSONB'},
    ] + TIMESTAMPS,
    'indexes': [
        {'name': 'idx_notifications_user', 'columns': ['user_id', 'created_at']},
        {'name': 'idx_notifications_unread', 'columns': ['user_id'], 'where': 'NOT is_read'}
    ]
}

schema = {
    'version': 1,
    'tables': [
        USERS,
        USER_FRIENDS,
        USER_BLOCKED,
        CARDS,
        USER_CARDS,
        TRADES,
        TRADE_CARDS,
        TRADE_MESSAGES,
        NOTIFICATIONS
    ],
    'triggers': [
        updated_at_trigger(table)
        for table in ('users', 'cards', 'user_cards', 'trades', 'notifications')
    ],
    'migrations': []
}
