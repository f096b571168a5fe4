"""
Payroll modules package.

Thin application glue above the pure engines: the payroll run aggregate,
its workflow declaration, ORM companions and the lifecycle service.
"""
