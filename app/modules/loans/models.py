# Supabase table: loans

"""
Expected Supabase table structure:

loans:
- id: uuid (primary key)
- institution_id: uuid (not null)
- member_id: uuid (foreign key to members.id)
- group_id: uuid (foreign key to groups.id)
- amount: numeric - principal
- outstanding_balance: numeric
- interest_rate: numeric - flat percentage per month
- term_months: integer
- status: text - PENDING | ACTIVE | DISBURSED | OVERDUE | CLOSED
- start_date: date
- next_payment_date: date (nullable)
- created_at: timestamp
"""
