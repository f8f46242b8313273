# Supabase Auth + profiles
# Authentication is handled by Supabase Auth (auth.users); authorization data
# lives in the public.profiles table maintained by the database.

"""
Expected Supabase table structure:

profiles:
- user_id: uuid (primary key, references auth.users.id)
- email: text
- full_name: text (nullable)
- role: text - PLATFORM_ADMIN | INSTITUTION_ADMIN | ADMIN | INSTITUTION_TREASURER |
        INSTITUTION_STAFF | STAFF | INSTITUTION_AUDITOR
- institution_id: uuid (nullable for platform admins)
- status: text - ACTIVE | SUSPENDED
- created_at / updated_at: timestamp
"""
