"""
Portfolio Platform
Service layer — business rules and the only place that commits.
"""
