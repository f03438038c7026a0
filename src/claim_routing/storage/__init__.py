"""
Persistence adapters: PostgreSQL (psycopg 3) and in-memory.
"""
