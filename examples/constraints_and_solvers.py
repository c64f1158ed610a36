"""Example: Constraints and Problem Solving

Demonstrates:
- Hock-Schittkowski problem 71 with SLSQP and trust-constr
- Ranged constraints
- Re-solving after a parameter change without rebuilding anything
"""

from nlpeval import Model, Problem

print("=" * 60)
print("NLPEVAL - Constraints & Solvers Demo")
print("=" * 60)

# =============================================================================
# Example 1: HS071
# =============================================================================
print("\n📐 Example 1: HS071")
print("-" * 40)

m = Model(name="hs071")
x1, x2, x3, x4 = (
    m.declare_variable(f"x{i + 1}", start=s, lb=1.0, ub=5.0)
    for i, s in enumerate([1.0, 5.0, 5.0, 1.0])
)

prob = (
    Problem(m, name="hs071")
    .minimize(x1 * x4 * (x1 + x2 + x3) + x3)
    .subject_to(x1 * x2 * x3 * x4 >= 25)
    .subject_to(x1**2 + x2**2 + x3**2 + x4**2 == 40)
)
print(prob)

for method in ("SLSQP", "trust-constr"):
    solution = prob.solve(method=method)
    print(f"\n{method}: {solution.status.value}")
    print(f"  x* = {[round(v, 4) for v in solution.values.values()]}")
    print(f"  Objective = {solution.objective_value:.6f}")
    print(f"  Iterations: {solution.iterations}")
    print(f"  Forward passes: {solution.evaluations['forward_passes']}, "
          f"cache hits: {solution.evaluations['cache_hits']}")

# =============================================================================
# Example 2: Ranged constraint
# =============================================================================
print("\n📏 Example 2: Ranged Constraint")
print("-" * 40)

m2 = Model()
x = m2.declare_variable("x", lb=0.0)
y = m2.declare_variable("y", lb=0.0)

# min (x - 3)² + (y - 3)² s.t. 1 ≤ x·y ≤ 4
prob2 = Problem(m2).minimize((x - 3) ** 2 + (y - 3) ** 2).subject_to(x * y, lb=1.0, ub=4.0)
sol2 = prob2.solve()
print(f"Solution: x = {sol2[x]:.4f}, y = {sol2[y]:.4f}, objective = {sol2.objective_value:.4f}")

# =============================================================================
# Example 3: Parametric re-solve
# =============================================================================
print("\n🔁 Example 3: Parametric Re-solve")
print("-" * 40)

m3 = Model()
q = m3.declare_variable("q", lb=0.0)
price = m3.declare_parameter(10.0, name="price")

# Revenue price·q minus quadratic cost q²
prob3 = Problem(m3).maximize(price * q - q**2)
session = prob3.evaluator()

for value in (10.0, 14.0, 20.0):
    price.set(value)
    sol = prob3.solve()
    print(f"price = {value:5.1f}: q* = {sol[q]:.4f}, profit = {sol.objective_value:.4f}")

print(f"Same evaluator session reused: {prob3.evaluator() is session}")

print("\n" + "=" * 60)
print("✅ Demo complete")
print("=" * 60)
