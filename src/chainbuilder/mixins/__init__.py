"""
Optional method packages that can be passed to ``chainbuilder(mixins=...)``.
"""
