import sys
sys.path.insert(0, 'src')
from cohort_impact.validation import AnalysisValidator
v = AnalysisValidator(n_simulations=10, n_periods=100, intervention=70)
res = v.run_full_validation()
print(f"\nFINAL_CHECK: {'SUCCESS' if res['all_passed'] else 'FAILURE'}")
