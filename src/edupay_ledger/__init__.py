'''
EduPay Ledger: fee allocation, term carryover, payment promise and arrears engine.
'''
