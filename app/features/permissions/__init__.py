"""
Organization permission feature module.

Static role defaults, custom organization roles and the membership context
used to gate tenant-scoped routes by module and action.
"""
