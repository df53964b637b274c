"""Exact integration of exponential synaptic currents and membrane drive.

Between spikes the subthreshold dynamics are linear and time invariant:

    tau_syn * dy/dt = -y + A            (filtered synaptic input)
    tau_m   * dV/dt = -(V - E_L) + tau_m * y + R * I

so one time step can be propagated exactly with a handful of constants.
The only delicate one is the response of the membrane to a decaying
synaptic current over one step,

    P21 = integral_0^h exp(-(h - s)/tau_m) * exp(-s/tau_syn) ds
        = tau_m * tau_syn * (P11 - P22) / (tau_syn - tau_m),

which is written here as h * P22 * expm1(a) / a with
a = h * (1/tau_m - 1/tau_syn). That form stays accurate when the two
time constants are close and tends to h * P22 when they are equal.
"""

from dataclasses import dataclass

import numpy as np


def _exprel(a):
    """expm1(a) / a, continuous at a = 0."""
    if a == 0.0:
        return 1.0
    return float(np.expm1(a) / a)


def membrane_synapse_propagator(tau_m, tau_syn, h):
    """Membrane response P21 to a unit synaptic current decaying over one step."""
    p22 = np.exp(-h / tau_m)
    a = h * (1.0 / tau_m - 1.0 / tau_syn)
    return float(h * p22 * _exprel(a))


@dataclass(frozen=True)
class Propagators:
    """Per-step decay and gain constants for a given step size h (ms)."""
    h: float
    P22: float       # membrane decay
    P20: float       # membrane gain for constant current (mV/pA)
    P11_ex: float    # excitatory current decay
    P11_in: float    # inhibitory current decay
    P21_ex: float    # membrane response to decaying excitatory current (ms)
    P21_in: float    # membrane response to decaying inhibitory current (ms)

    @classmethod
    def from_params(cls, params, h):
        p22 = float(np.exp(-h / params.tau_m))
        return cls(
            h=h,
            P22=p22,
            P20=params.tau_m / params.c_m * (1.0 - p22),
            P11_ex=float(np.exp(-h / params.tau_syn_ex)),
            P11_in=float(np.exp(-h / params.tau_syn_in)),
            P21_ex=membrane_synapse_propagator(params.tau_m, params.tau_syn_ex, h),
            P21_in=membrane_synapse_propagator(params.tau_m, params.tau_syn_in, h),
        )


def synaptic_step(deposit, i_syn, tau_syn, p11, p21, params, prop):
    """Advance one synaptic channel by one step.

    Parameters
    ----------
    deposit : float
        Summed weight of spikes arriving this step (pA).
    i_syn : float
        Filtered synaptic current at the start of the step (pA).
    tau_syn : float
        Decay time constant of the channel (ms).
    p11, p21 : float
        Channel decay and membrane response propagators.
    params : GIFPopParams
    prop : Propagators

    Returns
    -------
    drive : float
        Contribution of the channel to the membrane potential (mV).
    i_syn_new : float
        Filtered current at the end of the step (pA).
    """
    # Input rate rescaled to the voltage units of the population equations.
    jna = deposit / prop.h * tau_syn / params.c_m
    jny = i_syn / params.c_m

    drive = params.tau_m * (1.0 - prop.P22) * jna + (jny - jna) * p21
    jny = jna + (jny - jna) * p11
    return drive, jny * params.c_m


def membrane_drive(ex_deposit, in_deposit, state, params, prop):
    """Total voltage drive h_tot for this step; updates the filtered currents.

    Uses the external current y0 latched on the previous step, so current
    deposits act with one step of latency.
    """
    h_tot = (params.I_e + state.y0) * prop.P20 + params.E_L

    h_ex, state.I_syn_ex = synaptic_step(
        ex_deposit, state.I_syn_ex, params.tau_syn_ex,
        prop.P11_ex, prop.P21_ex, params, prop)
    h_in, state.I_syn_in = synaptic_step(
        in_deposit, state.I_syn_in, params.tau_syn_in,
        prop.P11_in, prop.P21_in, params, prop)

    return h_tot + h_ex + h_in
