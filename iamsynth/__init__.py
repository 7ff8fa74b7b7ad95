"""
Synthesis of IAM policies for a construct tree.

Grants are recorded while the tree is built; synthesize() validates, renders
and wires everything in one pass afterwards. The Pulumi bridge lives in
iamsynth.emit and has to be imported on its own.
"""
from .errors import (
    InvalidPolicyStatement, UnresolvableCrossStackReference, NoRegionError,
    ValidationError, AmbiguousDependencyCycle,
)
from .principals import (
    ArnPrincipal, AccountPrincipal, ServicePrincipal, FederatedPrincipal,
    AnyPrincipal, StarPrincipal, OrganizationPrincipal, CompositePrincipal,
    PrincipalWithConditions,
)
from .statement import Effect, PolicyStatement
from .document import PolicyDocument
from .binder import ResourcePolicyBinder, IdentityPolicyBinder, TrustPolicyBinder
from .grant import Grant
from .crossstack import CrossStackReferenceResolver
from .synth import synthesize
