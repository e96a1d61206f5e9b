import numpy as np
import pandas as pd
from patsy import dmatrix
from scipy.special import digamma, polygamma
from scipy.stats import t, f
from statsmodels.nonparametric.smoothers_lowess import lowess
from statsmodels.stats.multitest import multipletests

# remove runtime warning (divided by zero)
np.seterr(divide='ignore', invalid='ignore')

# bcolors
OKCYAN = '\033[96m'
WARNING = '\033[93m'
ENDC = '\033[0m'


class LinearModel:
    """
    Linear models fitted feature by feature with empirical Bayes moderation of the residual variances.
    Response is given as features x samples (e.g. module eigengenes x samples).

    :param Y: response, features in rows and samples in columns
    :type Y: pandas dataframe
    :param design: design matrix, samples in rows and coefficients in columns
    :type design: pandas dataframe
    """

    def __init__(self, Y, design):
        if not isinstance(Y, pd.DataFrame):
            raise ValueError("Y is not pandas dataframe!")
        if not isinstance(design, pd.DataFrame):
            raise ValueError("design is not pandas dataframe!")
        if Y.shape[1] != design.shape[0]:
            raise ValueError("row dimension of design doesn't match column dimension of data object")
        if not Y.columns.equals(design.index):
            raise ValueError("sample names of Y and design are not in the same order!")

        self.Y = Y
        self.design = design
        # design columns of each covariate, recorded by designMatrix
        self.covariateColumns = dict(design.attrs.get('covariates', {}))

        self.coefficients = None
        self.stdev_unscaled = None
        self.sigma = None
        self.df_residual = None
        self.Amean = None
        self.cov_coefficients = None

        self.df_prior = None
        self.s2_prior = None
        self.s2_post = None
        self.df_total = None
        self.t = None
        self.p_value = None
        self.F = None
        self.F_p_value = None

    @staticmethod
    def designMatrix(sampleInfo, covariates, referenceLevels=None):
        """
        Build a design matrix with an intercept, treatment contrasts for categorical covariates and linear terms
        for numeric covariates

        :param sampleInfo: sample information, samples in rows
        :type sampleInfo: pandas dataframe
        :param covariates: columns of sampleInfo to put in the model
        :type covariates: list of str
        :param referenceLevels: reference level of categorical covariates (default: first level in sorted order)
        :type referenceLevels: dict

        :return: design matrix with R-style column names, samples in rows; design.attrs['covariates'] maps each
            covariate to its columns
        :rtype: pandas dataframe
        """
        if referenceLevels is None:
            referenceLevels = {}
        if isinstance(covariates, str):
            covariates = [covariates]
        missing = [cov for cov in covariates if cov not in sampleInfo.columns]
        if len(missing) > 0:
            raise ValueError(f"covariate(s) {missing} are not in sample information!")

        data = sampleInfo[covariates].copy()
        incomplete = data.isnull().any(axis=1)
        if incomplete.any():
            print(f"{WARNING}{incomplete.sum()} sample(s) with missing covariates removed from the model: "
                  f"{data.index[incomplete].tolist()}{ENDC}")
            data = data.loc[~incomplete, :]
        if data.shape[0] == 0:
            raise ValueError("there is no sample with complete covariates!")

        terms = []
        renames = {'Intercept': '(Intercept)'}
        covariateColumns = {}
        for cov in covariates:
            if pd.api.types.is_bool_dtype(data[cov]) or not pd.api.types.is_numeric_dtype(data[cov]):
                data[cov] = data[cov].astype(str)
                levels = sorted(data[cov].unique())
                reference = referenceLevels.get(cov, levels[0])
                if reference not in levels:
                    raise ValueError(f"reference level {reference} is not a level of {cov}: {levels}")
                if len(levels) < 2:
                    print(f"{WARNING}covariate {cov} has only one level and will not be estimated.{ENDC}")
                term = f"C(Q('{cov}'), Treatment(reference={reference!r}))"
                for level in levels:
                    renames[f"{term}[T.{level}]"] = f"{cov}{level}"
                covariateColumns[cov] = [f"{cov}{level}" for level in levels if level != reference]
            else:
                term = f"Q('{cov}')"
                renames[term] = cov
                covariateColumns[cov] = [cov]
            terms.append(term)

        formula = " + ".join(terms) if len(terms) > 0 else "1"
        design = dmatrix(formula, data, return_type='dataframe', NA_action='raise')
        design.rename(columns=renames, inplace=True)

        if np.linalg.matrix_rank(design.values) < design.shape[1]:
            raise ValueError("design matrix is not of full rank! Coefficients not estimable: "
                             f"{design.columns.tolist()}")

        design.attrs['covariates'] = {cov: [c for c in cols if c in design.columns]
                                      for cov, cols in covariateColumns.items()}

        return design

    @classmethod
    def lmFit(cls, Y, design):
        """
        Fit a linear model for each feature by ordinary least squares
        """
        fit = cls(Y, design)
        X = design.values.astype(float)
        y = Y.values.astype(float)
        n, p = X.shape
        if n <= p:
            raise ValueError("No residual degrees of freedom in linear model fits!")

        XtXinv = np.linalg.inv(np.matmul(X.T, X))
        coef = np.matmul(np.matmul(y, X), XtXinv)
        resid = y - np.matmul(coef, X.T)

        fit.df_residual = np.repeat(n - p, y.shape[0]).astype(float)
        fit.sigma = pd.Series(np.sqrt(np.sum(resid ** 2, axis=1) / (n - p)), index=Y.index)
        fit.coefficients = pd.DataFrame(coef, index=Y.index, columns=design.columns)
        fit.stdev_unscaled = pd.DataFrame(np.tile(np.sqrt(np.diag(XtXinv)), (y.shape[0], 1)),
                                          index=Y.index, columns=design.columns)
        fit.cov_coefficients = pd.DataFrame(XtXinv, index=design.columns, columns=design.columns)
        fit.Amean = pd.Series(np.mean(y, axis=1), index=Y.index)

        return fit

    @staticmethod
    def trigammaInverse(x):
        """
        Solve trigamma(y) = x for y by Newton iteration
        """
        x = np.atleast_1d(np.asarray(x, dtype=float))
        y = np.full(x.shape, np.nan)
        large = x > 1e7
        small = x < 1e-6
        y[large] = 1 / np.sqrt(x[large])
        y[small] = 1 / x[small]
        rest = ~(large | small | np.isnan(x))
        if not rest.any():
            return y

        xr = x[rest]
        yr = 0.5 + 1 / xr
        for _ in range(50):
            tri = polygamma(1, yr)
            dif = tri * (1 - tri / xr) / polygamma(2, yr)
            yr = yr + dif
            if np.max(-dif / yr) < 1e-8:
                break
        else:
            print(f"{WARNING}Iteration limit exceeded in trigammaInverse.{ENDC}")
        y[rest] = yr
        return y

    @staticmethod
    def fitFDist(x, df1, covariate=None):
        """
        Moment estimation of the parameters of a scaled F-distribution given the first degrees of freedom

        :return: prior variance (scale) and prior degrees of freedom (df2)
        :rtype: ndarray, float
        """
        x = np.asarray(x, dtype=float)
        df1 = np.broadcast_to(np.asarray(df1, dtype=float), x.shape)
        scale = np.full(x.shape, np.nan)

        ok = np.isfinite(x) & np.isfinite(df1) & (x > -1e-15) & (df1 > 1e-15)
        nok = np.sum(ok)
        if nok == 0:
            return scale, np.nan
        if nok == 1:
            scale[:] = x[ok][0]
            return scale, 0.0

        xok = np.maximum(x[ok], 0)
        dfok = df1[ok]
        m = np.median(xok)
        if m == 0:
            print(f"{WARNING}More than half of residual variances are exactly zero: eBayes unreliable{ENDC}")
            m = 1
        elif np.any(xok == 0):
            print(f"{WARNING}Zero sample variances detected, have been offset away from zero{ENDC}")
        xok = np.maximum(xok, 1e-5 * m)

        z = np.log(xok)
        e = z - digamma(dfok / 2) + np.log(dfok / 2)

        if covariate is None:
            emean = np.mean(e)
            evar = np.sum((e - emean) ** 2) / (nok - 1)
        else:
            covariate = np.asarray(covariate, dtype=float)
            trend = lowess(e, covariate[ok], return_sorted=True)
            emean = np.interp(covariate[ok], trend[:, 0], trend[:, 1])
            evar = np.sum((e - emean) ** 2) / max(nok - 2, 1)

        evar = evar - np.mean(polygamma(1, dfok / 2))
        if evar > 0:
            df2 = 2 * LinearModel.trigammaInverse(evar)[0]
            offset = digamma(df2 / 2) - np.log(df2 / 2)
        else:
            df2 = np.inf
            offset = 0

        if covariate is None:
            scale[:] = np.exp(emean + offset)
        else:
            scale[:] = np.exp(np.interp(covariate, trend[:, 0], trend[:, 1]) + offset)

        return scale, df2

    @staticmethod
    def squeezeVar(var, df, covariate=None):
        """
        Squeeze a set of sample variances together by computing empirical Bayes posterior means

        :return: dictionary with "var_post", "var_prior" and "df_prior"
        :rtype: dict
        """
        var = np.asarray(var, dtype=float)
        if len(var) == 0:
            raise ValueError("var is empty")
        if len(var) == 1:
            return {"var_post": var, "var_prior": var, "df_prior": 0.0}
        df = np.broadcast_to(np.asarray(df, dtype=float), var.shape)

        var_prior, df_prior = LinearModel.fitFDist(var, df1=df, covariate=covariate)
        if np.any(np.isnan(var_prior)):
            raise ValueError("Could not estimate prior variance: not enough finite residual variances.")

        if np.isinf(df_prior):
            var_post = var_prior.copy()
        else:
            var_post = (df * var + df_prior * var_prior) / (df + df_prior)

        return {"var_post": var_post, "var_prior": var_prior, "df_prior": df_prior}

    def eBayes(self, trend=False):
        """
        Empirical Bayes moderated t-statistics and F-statistics of the fitted coefficients

        :param trend: should an intensity-dependent trend be allowed for the prior variance (default: False)
        :type trend: bool

        :return: the model itself, with moderated statistics filled in
        """
        if self.coefficients is None:
            raise ValueError("No fitted model found! call lmFit first.")

        print(f"{OKCYAN}Empirical Bayes moderation of {self.coefficients.shape[0]} linear models...{ENDC}")

        covariate = self.Amean.values if trend else None
        out = LinearModel.squeezeVar(self.sigma.values ** 2, self.df_residual, covariate=covariate)
        self.df_prior = out['df_prior']
        self.s2_prior = out['var_prior']
        self.s2_post = pd.Series(out['var_post'], index=self.coefficients.index)

        self.t = self.coefficients / self.stdev_unscaled / np.sqrt(self.s2_post.values)[:, np.newaxis]
        dfTotal = self.df_residual + self.df_prior
        dfPooled = np.sum(self.df_residual)
        self.df_total = np.minimum(dfTotal, dfPooled)
        self.p_value = pd.DataFrame(2 * t.sf(np.abs(self.t.values), self.df_total[:, np.newaxis]),
                                    index=self.t.index, columns=self.t.columns)

        coefs = [coef for coef in self.coefficients.columns if coef != '(Intercept)']
        if len(coefs) > 0:
            self.F, self.F_p_value = self.FStat(coefs)

        print("\tDone..\n")

        return self

    def FStat(self, coefs):
        """
        Moderated F-statistic for the given coefficients
        """
        corMatrix = self.cov_coefficients.loc[coefs, coefs].values
        sd = np.sqrt(np.diag(corMatrix))
        corMatrix = corMatrix / np.outer(sd, sd)
        tstat = self.t.loc[:, coefs].values

        if len(coefs) == 1:
            F = tstat[:, 0] ** 2
            r = 1
        else:
            values, vectors = np.linalg.eigh(corMatrix)
            order = np.argsort(values)[::-1]
            values = values[order]
            vectors = vectors[:, order]
            r = int(np.sum(values / values[0] > 1e-8))
            Q = vectors[:, :r] / np.sqrt(values[:r])
            F = np.sum(np.matmul(tstat, Q) ** 2, axis=1) / r

        pValue = f.sf(F, r, self.df_total)
        return pd.Series(F, index=self.t.index), pd.Series(pValue, index=self.t.index)

    def resolveCoef(self, coef=None):
        if coef is None:
            return [c for c in self.coefficients.columns if c != '(Intercept)']
        if isinstance(coef, str):
            coef = [coef]
        coefs = []
        for name in coef:
            if name in self.coefficients.columns:
                coefs.append(name)
                continue
            matched = self.covariateColumns.get(name, [])
            if len(matched) == 0:
                raise ValueError(f"{name} is not a coefficient or covariate of the model! "
                                 f"coefficients are: {self.coefficients.columns.tolist()}")
            coefs.extend(matched)
        return list(dict.fromkeys(coefs))

    def topTable(self, coef=None, number=np.inf, adjust="fdr_bh", sortBy="P"):
        """
        Extract a table of the top-ranked features from a moderated linear model fit

        :param coef: coefficient name(s) or covariate name; all non-intercept coefficients when None
        :type coef: str or list of str
        :param number: maximum number of features to list (default: all)
        :type number: int
        :param adjust: multiple testing adjustment method understood by statsmodels multipletests, or "none" (default: "fdr_bh")
        :type adjust: str
        :param sortBy: "P", "t", "logFC", "F", "AveExpr" or "none" (default: "P")
        :type sortBy: str

        :return: table with logFC, AveExpr, t, P.Value and adj.P.Val for one coefficient or F, P.Value, adj.P.Val for several
        :rtype: pandas dataframe
        """
        if self.t is None:
            raise ValueError("Need to run eBayes first!")
        coefs = self.resolveCoef(coef)
        if len(coefs) == 0:
            raise ValueError("there is no coefficient to test!")

        if len(coefs) == 1:
            coef = coefs[0]
            table = pd.DataFrame({'logFC': self.coefficients[coef],
                                  'AveExpr': self.Amean,
                                  't': self.t[coef],
                                  'P.Value': self.p_value[coef]})
        else:
            F, FpValue = self.FStat(coefs)
            table = self.coefficients.loc[:, coefs].copy()
            table['AveExpr'] = self.Amean
            table['F'] = F
            table['P.Value'] = FpValue

        if adjust is None or adjust == "none":
            table['adj.P.Val'] = table['P.Value']
        else:
            table['adj.P.Val'] = multipletests(table['P.Value'].values, method=adjust)[1]

        if sortBy == "P":
            table.sort_values('P.Value', kind='stable', inplace=True)
        elif sortBy in ["t", "logFC"] and len(coefs) == 1:
            table = table.iloc[np.argsort(-np.abs(table[sortBy].values), kind='stable'), :]
        elif sortBy == "F" and len(coefs) > 1:
            table.sort_values('F', ascending=False, kind='stable', inplace=True)
        elif sortBy == "AveExpr":
            table.sort_values('AveExpr', ascending=False, kind='stable', inplace=True)
        elif sortBy != "none":
            raise ValueError(f"sortBy {sortBy} is not valid for the requested coefficients!")

        if np.isfinite(number):
            table = table.head(int(number))

        return table

    def decideTests(self, pValue=0.05, adjust="fdr_bh", coef=None):
        """
        Classify each feature as up (1), down (-1) or not significant (0) for each coefficient
        """
        if self.t is None:
            raise ValueError("Need to run eBayes first!")
        coefs = self.resolveCoef(coef)
        results = pd.DataFrame(0, index=self.t.index, columns=coefs)
        for coef in coefs:
            p = self.p_value[coef].values
            if adjust is not None and adjust != "none":
                p = multipletests(p, method=adjust)[1]
            results[coef] = (np.sign(self.t[coef].values) * (p < pValue)).astype(int)
        return results
