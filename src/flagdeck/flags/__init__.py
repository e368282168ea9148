"""
Applications, flags and tags: persistence models, repository and bulk tag mutations.
"""
