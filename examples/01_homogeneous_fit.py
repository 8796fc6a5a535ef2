import numpy as np

from welltest_fitting import ObservedData, ParameterStore, fit, get_model

model = get_model("homogeneous")

truth = dict(model.default_parameters(), k=35.0, S=2.5, C=0.05)
rng = np.random.default_rng(0)
t = np.logspace(-3, 2, 60)
curve = model.evaluate(truth, t)
noise = 0.01
data = ObservedData.from_arrays(
    t,
    curve.pressure * np.exp(rng.normal(0, noise, size=t.size)),
    curve.derivative * np.exp(rng.normal(0, noise, size=t.size)),
)

store = ParameterStore.from_defaults(model.defaults)
for name in ("k", "S", "C"):
    store.set_fit(name)
store.set_bounds("S", -5.0, 20.0)

# tolerance=0 keeps iterating until the damping saturates
res = fit(model, data, store, weight=0.5, options={"tolerance": 0.0})

print(res.summary(digits=4))
print("k:", res["k"].u)
print("true:", {k: truth[k] for k in ("k", "S", "C")})
