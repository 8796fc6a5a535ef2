from welltest_fitting import FittingSession

session = FittingSession("homogeneous")

# Several values on one parameter switch the curve refresh into a sweep.
session.set_parameter_text("S", "0, 2，5, 10")
update = session.update_model_curve()

print("fit enabled:", update.fit_enabled)
for c in update.curves:
    i = c.time.searchsorted(1.0)
    print(
        f"{c.handle:>3d} {c.pressure_label:<12s} {c.color}  "
        f"dp(1h)={c.pressure[i]:.4g} MPa  dp'(1h)={c.derivative[i]:.4g} MPa"
    )

session.set_parameter_text("S", "2")
update = session.update_model_curve()
print("fit enabled:", update.fit_enabled, "curve points:", update.time.size)
