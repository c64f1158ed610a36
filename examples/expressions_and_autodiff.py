"""Example: Expressions, Sessions and Automatic Differentiation

Demonstrates:
- Building expressions on a model with natural Python syntax
- Querying values, gradients, Jacobians and Hessians from a session
- Shared sub-expressions and the last-point cache
- Conditionals and user-registered functions
"""

import numpy as np

from nlpeval import Model, NamedRef, exp, ifelse, log, sin
from nlpeval.core.verification import gradient_check

print("=" * 60)
print("NLPEVAL - Expressions & Autodiff Demo")
print("=" * 60)

# =============================================================================
# Expressions and direct evaluation
# =============================================================================
print("\n📦 Expressions")
print("-" * 40)

m = Model(name="demo")
x = m.declare_variable("x", start=1.5)
y = m.declare_variable("y", start=2.5)

f = m.build_expression(2 * x**2 + 3 * y**2 + sin(x * y) + exp(-x) * log(y + 1))

print(f"Expression: {f}")
print(f"Variables: {[v.name for v in f.variables]}")
print(f"Value at start point:  {f.value():.6f}")
print(f"Gradient at start:     {f.gradient()}")

check = gradient_check(f, n_samples=10, seed=0, low=0.5, high=2.0)
print(f"Finite-difference check passed: {check.all_passed} (max error {check.max_error:.2e})")

# =============================================================================
# Evaluator session
# =============================================================================
print("\n📐 Evaluator Session")
print("-" * 40)

p = m.declare_parameter(3.0, name="p")
m.register_named("shared", p * x * y)
g1 = m.build_expression(NamedRef("shared") + x)
g2 = m.build_expression(NamedRef("shared") * y)

session = m.create_session(f, [g1, g2])
session.initialize(["value", "gradient", "jacobian", "hessian"])

point = np.array([1.5, 2.5])
print(f"f(x)       = {session.value_at(point):.6f}")
print(f"grad f(x)  = {session.gradient_at(point)}")
print(f"g(x)       = {session.constraints_at(point)}")
print(f"J(x)       =\n{session.jacobian_at(point).toarray()}")
print("H_L(x) (lower triangle, lambda = [1, 1]) =")
print(session.lagrangian_hessian_at(point, 1.0, [1.0, 1.0]).toarray())
print(f"Work so far: {session.stats}")

p.set(4.0)
print(f"\nAfter p = 4: g(x) = {session.constraints_at(point)}")

# =============================================================================
# Conditionals and user functions
# =============================================================================
print("\n🔗 Conditionals & User Functions")
print("-" * 40)

piecewise = m.build_expression(ifelse(x <= 1, x**2, x))
for x0 in (0.5, 1.0, 2.0):
    value, grad = piecewise.value_and_gradient([x0, 0.0])
    print(f"ifelse(x <= 1, x**2, x) at x={x0}: value={value:.3f}, slope={grad[0]:.3f}")

softplus = m.register_function("softplus", 1, lambda a: np.log(1 + np.exp(a)), autodiff=True)
sp = m.build_expression(softplus(x - y))
print(f"\nsoftplus(x - y) at start: {sp.value():.6f}, gradient {sp.gradient()}")

print("\n" + "=" * 60)
print("✅ Demo complete")
print("=" * 60)
