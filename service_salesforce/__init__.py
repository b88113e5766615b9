"""
Salesforce service package for the Salesforce Access Layer.
"""
