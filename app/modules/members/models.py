# Supabase tables: members, group_members

"""
Expected Supabase table structure:

members:
- id: uuid (primary key)
- institution_id: uuid (not null)
- full_name: text (not null)
- phone: text (unique per institution)
- email: text (nullable)
- national_id: text (nullable, unique)
- member_code: text (nullable)
- date_of_birth: date (nullable)
- status: text - ACTIVE | INACTIVE | CLOSED
- savings_balance / fund_balance: numeric (maintained by the database)
- created_at / updated_at: timestamp

group_members:
- id: uuid (primary key)
- institution_id: uuid
- group_id: uuid (foreign key to groups.id)
- member_id: uuid (foreign key to members.id)
- role: text - CHAIRPERSON | SECRETARY | TREASURER | MEMBER
- status: text - GOOD_STANDING | IN_ARREARS | DEFAULTED
- joined_date: date
"""
