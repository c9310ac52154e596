"""Rebel group ERGM analysis - load conflict-tie networks and compare ERGM fits."""

__version__ = "0.1.0"

from rebel_ergm.comparator import ComparisonResult as ComparisonResult
from rebel_ergm.comparator import ModelFit as ModelFit
from rebel_ergm.comparator import compare_models as compare_models
from rebel_ergm.estimation import MPLEEstimator as MPLEEstimator
from rebel_ergm.loader import load_network_data as load_network_data
from rebel_ergm.network import Network as Network
from rebel_ergm.network import assemble_network as assemble_network
from rebel_ergm.terms import ModelSpec as ModelSpec
