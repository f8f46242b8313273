# Supabase tables: groups, group_members
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:

groups:
- id: uuid (primary key)
- institution_id: uuid (not null)
- group_name: text (not null)
- code: text (nullable, unique per institution)
- meeting_day: text (default: 'Monday')
- expected_amount: numeric - contribution expected per member per period
- frequency: text - Weekly | Monthly
- cycle_label: text (e.g. 'Cycle 2025')
- grace_days: int (default: 0)
- bank_name / account_ref: text (nullable)
- currency: text (default: 'RWF')
- status: text - ACTIVE | PAUSED | CLOSED
- fund_balance: numeric (maintained by the database)
- created_at / updated_at: timestamp

group_members:
- id: uuid (primary key)
- group_id: uuid (foreign key to groups.id, not null)
- member_id: uuid (foreign key to members.id, not null)
- role: text - CHAIRPERSON | SECRETARY | TREASURER | MEMBER
- status: text - GOOD_STANDING | IN_ARREARS | DEFAULTED
- unique constraint on (group_id, member_id)
"""
