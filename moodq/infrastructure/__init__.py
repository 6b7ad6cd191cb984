"""Infrastructure - settings, database, budget tracking, circuit breaking"""
