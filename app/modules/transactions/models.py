# Supabase table: transactions
# RPCs: allocate_transaction, suggest_member_for_transaction

"""
Expected Supabase table structure:

transactions:
- id: uuid (primary key)
- institution_id: uuid (not null)
- member_id: uuid (nullable until allocated)
- group_id: uuid (nullable)
- type: text - DEPOSIT | WITHDRAWAL | LOAN_DISBURSEMENT | LOAN_REPAYMENT | CONTRIBUTION | FEE | SAVINGS
- amount: numeric (> 0)
- currency: text (default: 'RWF')
- channel: text - MOMO | CASH | BANK | MOBILE_MONEY
- status: text - PENDING | COMPLETED | FAILED | REVERSED
- allocation_status: text - unallocated | allocated | flagged | duplicate
- allocated_at / allocated_by: timestamp / uuid
- momo_ref / reference: text
- payer_phone / payer_name: text
- note: text
- occurred_at / created_at: timestamp

allocate_transaction(p_transaction_id, p_member_id, p_note) sets member_id,
group_id and allocation_status atomically.
"""
