# ======================= KEY/VALUE ======================

# One JSON document per key, replaced wholesale on every write.
kv_schema = '''
    CREATE TABLE IF NOT EXISTS kv_store (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,

        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
'''
