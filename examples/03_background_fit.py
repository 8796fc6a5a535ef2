import json
import time

import numpy as np

from welltest_fitting import FittingSession, ObservedData, get_model

model = get_model("fractured_horizontal")
truth = dict(model.default_parameters(), k=0.4, Lf=80.0)
truth["LfD"] = truth["Lf"] / truth["L"]

t = np.logspace(-2, 3, 50)
curve = model.evaluate(truth, t)

session = FittingSession(model, data=ObservedData.from_arrays(t, curve.pressure, curve.derivative))
session.fit_weight = 60
session.store.set_fit("k")
session.store.set_fit("Lf")

task = session.start_fit()
while not task.done():
    for kind, payload in session.poll():
        if kind == "snapshot":
            print(f"iter {payload.iteration:>2d}  SSE/n={payload.normalized_error:.3e}")
    time.sleep(0.05)

result = session.wait()
print(result.summary())
print("store k, Lf, LfD:", [session.store[n].value for n in ("k", "Lf", "LfD")])

state = json.dumps(session.to_state())
restored = FittingSession.from_state(json.loads(state))
print("restored model:", restored.model_type, "weight:", restored.fit_weight)
