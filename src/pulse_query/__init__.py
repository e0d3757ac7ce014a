from pulse_query.bus import EventBus as EventBus
from pulse_query.bus import Subscription as Subscription
from pulse_query.env import configure_logging as configure_logging
from pulse_query.env import env as env
from pulse_query.errors import ErrorReporter as ErrorReporter
from pulse_query.errors import MutationPendingError as MutationPendingError
from pulse_query.errors import QueryDisposedError as QueryDisposedError
from pulse_query.errors import QueryError as QueryError
from pulse_query.errors import errors as errors
from pulse_query.infinity_query import FetchFunction as FetchFunction
from pulse_query.infinity_query import InfinityQuery as InfinityQuery
from pulse_query.infinity_query import NextCursorFunction as NextCursorFunction
from pulse_query.infinity_query import Page as Page
from pulse_query.infinity_query import PageList as PageList
from pulse_query.infinity_query import PageStore as PageStore
from pulse_query.mutation import Mutation as Mutation
from pulse_query.mutation import MutationAction as MutationAction
from pulse_query.mutation import MutationError as MutationError
from pulse_query.mutation import MutationFamily as MutationFamily
from pulse_query.mutation import MutationIdle as MutationIdle
from pulse_query.mutation import MutationPending as MutationPending
from pulse_query.mutation import MutationState as MutationState
from pulse_query.mutation import MutationSuccess as MutationSuccess
from pulse_query.mutation import mutation as mutation
from pulse_query.mutation import mutation_family as mutation_family
from pulse_query.reactive import Batch as Batch
from pulse_query.reactive import Computed as Computed
from pulse_query.reactive import Effect as Effect
from pulse_query.reactive import Signal as Signal
from pulse_query.reactive import Untrack as Untrack
from pulse_query.reactive import batch as batch
from pulse_query.reactive import flush_effects as flush_effects
from pulse_query.reactive import untrack as untrack
