# Staff accounts
# Staff sign in through Supabase Auth; their role and institution live in profiles.

"""
Expected Supabase table structure:

profiles:
- user_id: uuid (primary key, references auth.users.id)
- email: text
- full_name: text (nullable)
- role: text - PLATFORM_ADMIN | ADMIN | INSTITUTION_ADMIN | INSTITUTION_TREASURER |
        INSTITUTION_STAFF | STAFF | INSTITUTION_AUDITOR
- institution_id: uuid (nullable for platform admins)
- status: text - ACTIVE | SUSPENDED
- is_active: boolean
- created_at / updated_at: timestamp

staff_invites:
- id: uuid (primary key)
- email: text
- institution_id: uuid
- role: text
- invited_by: uuid (references auth.users.id)
- status: text - pending | accepted | expired
- metadata: jsonb (nullable)
- created_at: timestamp
"""
