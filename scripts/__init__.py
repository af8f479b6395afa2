"""Pipeline scripts"""
