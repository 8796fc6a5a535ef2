import numpy as np

from welltest_fitting import ObservedData, ParameterStore, fit, get_model
from welltest_fitting.data import bourdet_derivative

model = get_model("homogeneous")
truth = dict(model.default_parameters(), k=20.0, S=-1.0)

# Gauge readings after shut-in at 25 MPa; a couple of rows before t=0 are dropped.
t = np.concatenate([[-0.5, 0.0], np.logspace(-3, 2, 80)])
p_shut_in = 25.0
dp = model.evaluate(truth, np.clip(t, 1e-6, None)).pressure
gauge = p_shut_in + np.where(t > 0, dp - dp[2], 0.0)

data = ObservedData.from_measurements(t, gauge, test_type="buildup", l_spacing=0.2)
print("points:", len(data), "max dp:", data.pressure.max())
print("late derivative:", bourdet_derivative(data.time, data.pressure)[-5:])

store = ParameterStore.from_defaults(model.defaults)
store.set_bounds("S", -5.0, 20.0)
store.set_value("S", 0.0)
store.set_fit("k")
store.set_fit("S")

res = fit(model, data, store, weight=0.7)
print(res.summary())
