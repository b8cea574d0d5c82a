"""Schema v1 - Custody, operations and marketplace ledger.

Tables:
- api_keys: tenant scoped credentials with maker/checker/viewer roles
- custody_records: one row per real-world asset in custody
- operations: maker-checker gated actions against a custody record
- listings, bids, ownership_records: off-chain marketplace ledger
- audit_logs: append-only event trail
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'api_keys',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'public_key', 'type': 'TEXT', 'nullable': False},
                {'name': 'secret_key', 'type': 'TEXT', 'nullable': False},
                {'name': 'tenant_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'role', 'type': 'TEXT', 'nullable': False},
                {'name': 'permissions', 'type': 'JSONB', 'nullable': False, 'default': "'[]'::jsonb"},
                {'name': 'end_user_id', 'type': 'TEXT'},
                {'name': 'name', 'type': 'TEXT'},
                {'name': 'is_active', 'type': 'BOOLEAN', 'nullable': False, 'default': 'true'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_api_keys_public_key', 'columns': ['public_key'], 'unique': True},
                {'name': 'idx_api_keys_tenant', 'columns': ['tenant_id']}
            ]
        },
        {
            'name': 'custody_records',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'asset_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'tenant_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'created_by', 'type': 'TEXT', 'nullable': False},
                {'name': 'requested_by', 'type': 'TEXT'},
                {'name': 'checked_by', 'type': 'TEXT'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'PENDING'"},
                {'name': 'blockchain', 'type': 'TEXT'},
                {'name': 'token_standard', 'type': 'TEXT'},
                {'name': 'token_address', 'type': 'TEXT'},
                {'name': 'token_id', 'type': 'TEXT'},
                {'name': 'quantity', 'type': 'NUMERIC(78, 18)'},
                {'name': 'nav_oracle_address', 'type': 'TEXT'},
                {'name': 'por_oracle_address', 'type': 'TEXT'},
                {'name': 'vault_id', 'type': 'TEXT'},
                {'name': 'error_message', 'type': 'TEXT'},
                {'name': 'rejection_reason', 'type': 'TEXT'},
                {'name': 'linked_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'minted_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_custody_tenant_asset', 'columns': ['tenant_id', 'asset_id'], 'unique': True},
                {'name': 'idx_custody_status', 'columns': ['status']}
            ]
        },
        {
            'name': 'operations',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'type', 'type': 'TEXT', 'nullable': False},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'PENDING_CHECKER'"},
                {'name': 'custody_record_id', 'type': 'UUID', 'nullable': False},
                {'name': 'tenant_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'payload', 'type': 'JSONB', 'nullable': False, 'default': "'{}'::jsonb"},
                {'name': 'created_by', 'type': 'TEXT', 'nullable': False},
                {'name': 'checked_by', 'type': 'TEXT'},
                {'name': 'checked_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'comment', 'type': 'TEXT'},
                {'name': 'rejection_reason', 'type': 'TEXT'},
                {'name': 'fireblocks_task_id', 'type': 'TEXT'},
                {'name': 'tx_hash', 'type': 'TEXT'},
                {'name': 'vault_id', 'type': 'TEXT'},
                {'name': 'error_message', 'type': 'TEXT'},
                {'name': 'idempotency_key', 'type': 'TEXT'},
                {'name': 'executed_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['custody_record_id'], 'references': 'custody_records(id)'}
            ],
            'indexes': [
                {
                    'name': 'idx_operations_in_flight',
                    'columns': ['custody_record_id', 'type'],
                    'unique': True,
                    'where': "status IN ('PENDING_CHECKER', 'APPROVED')"
                },
                {'name': 'idx_operations_tenant_created', 'columns': ['tenant_id', 'created_at']},
                {'name': 'idx_operations_idempotency', 'columns': ['idempotency_key']}
            ]
        },
        {
            'name': 'listings',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'asset_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'custody_record_id', 'type': 'UUID', 'nullable': False},
                {'name': 'tenant_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'seller_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'price', 'type': 'NUMERIC(78, 18)', 'nullable': False},
                {'name': 'currency', 'type': 'TEXT', 'nullable': False, 'default': "'USD'"},
                {'name': 'quantity_listed', 'type': 'NUMERIC(78, 18)', 'nullable': False},
                {'name': 'quantity_sold', 'type': 'NUMERIC(78, 18)', 'nullable': False, 'default': '0'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'ACTIVE'"},
                {'name': 'expiry_date', 'type': 'TIMESTAMPTZ', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['custody_record_id'], 'references': 'custody_records(id)'}
            ],
            'indexes': [
                {'name': 'idx_listings_tenant_status', 'columns': ['tenant_id', 'status']},
                {'name': 'idx_listings_seller_asset', 'columns': ['seller_id', 'asset_id']}
            ],
            'checks': [
                'quantity_sold <= quantity_listed'
            ]
        },
        {
            'name': 'bids',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'listing_id', 'type': 'UUID', 'nullable': False},
                {'name': 'tenant_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'buyer_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount', 'type': 'NUMERIC(78, 18)', 'nullable': False},
                {'name': 'quantity', 'type': 'NUMERIC(78, 18)', 'nullable': False},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'PENDING'"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['listing_id'], 'references': 'listings(id)'}
            ],
            'indexes': [
                {'name': 'idx_bids_listing', 'columns': ['listing_id', 'status']}
            ]
        },
        {
            'name': 'ownership_records',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'asset_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'custody_record_id', 'type': 'UUID', 'nullable': False},
                {'name': 'tenant_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'owner_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'seller_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'quantity', 'type': 'NUMERIC(78, 18)', 'nullable': False},
                {'name': 'purchase_price', 'type': 'NUMERIC(78, 18)', 'nullable': False},
                {'name': 'listing_id', 'type': 'UUID'},
                {'name': 'bid_id', 'type': 'UUID'},
                {'name': 'acquired_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['custody_record_id'], 'references': 'custody_records(id)'}
            ],
            'indexes': [
                {'name': 'idx_ownership_asset_owner', 'columns': ['tenant_id', 'asset_id', 'owner_id']},
                {'name': 'idx_ownership_asset_seller', 'columns': ['tenant_id', 'asset_id', 'seller_id']}
            ]
        },
        {
            'name': 'audit_logs',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'event_type', 'type': 'TEXT', 'nullable': False},
                {'name': 'actor', 'type': 'TEXT', 'nullable': False},
                {'name': 'tenant_id', 'type': 'TEXT'},
                {'name': 'custody_record_id', 'type': 'UUID'},
                {'name': 'operation_id', 'type': 'UUID'},
                {'name': 'metadata', 'type': 'JSONB', 'nullable': False, 'default': "'{}'::jsonb"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_audit_custody', 'columns': ['custody_record_id', 'created_at']},
                {'name': 'idx_audit_operation', 'columns': ['operation_id']}
            ]
        }
    ]
}
